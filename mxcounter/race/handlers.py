"""
Command handlers: the only code that mutates RaceState.

One handler per command type. Each checks its preconditions, mutates the
state it is given in place and reports whether anything changed. A failed
precondition is a silent no-op (logged); callers persist and broadcast only
when ``CommandOutcome.changed`` is True.

Handlers do no I/O and read no clocks: the current time and new ids come
from the HandlerContext supplied by the caller.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from mxcounter.config import (
    DEFAULT_MAX_LAPS, DEFAULT_RIDER_CLASS, PENALTY_MS,
)
from mxcounter.models import Race, RaceState, Rider
from mxcounter.race import commands as cmd
from mxcounter.race.ranking import update_positions, update_positions_only
from mxcounter.race.timing import (
    add_penalty, record_lap, reset_rider, undo_lap, update_current_lap,
)

log = logging.getLogger(__name__)


@dataclass
class HandlerContext:
    now_ms: int
    new_id: Callable[[], str]
    penalty_ms: int = PENALTY_MS
    default_class: str = DEFAULT_RIDER_CLASS


@dataclass
class CommandOutcome:
    changed: bool
    # Deep copy of the race handed to the results publisher after finishRace.
    finished_race: Optional[Race] = None


_UNCHANGED = CommandOutcome(changed=False)
_CHANGED = CommandOutcome(changed=True)


def _skip(command, reason: str) -> CommandOutcome:
    log.info("Ignoring %s: %s", command.type, reason)
    return _UNCHANGED


def _rider_of(state: RaceState, rider_id: str) -> tuple[Optional[Race], Optional[Rider]]:
    race = state.current_race()
    if race is None:
        return None, None
    return race, race.find_rider(rider_id)


# ── Races ─────────────────────────────────────────────────────────────────────

def create_race(state: RaceState, command: cmd.CreateRace, ctx: HandlerContext) -> CommandOutcome:
    name = command.name.strip()
    if not name:
        return _skip(command, "empty race name")
    race = Race(id=ctx.new_id(), name=name, max_laps=DEFAULT_MAX_LAPS)
    state.races.append(race)
    if state.current_race_id is None:
        state.current_race_id = race.id
    log.info("Created race %s (%s)", race.id, race.name)
    return _CHANGED


def select_race(state: RaceState, command: cmd.SelectRace, ctx: HandlerContext) -> CommandOutcome:
    if command.race_id is not None and state.find_race(command.race_id) is None:
        return _skip(command, f"unknown race {command.race_id}")
    if state.current_race_id == command.race_id:
        return _skip(command, "already selected")
    state.current_race_id = command.race_id
    return _CHANGED


def remove_race(state: RaceState, command: cmd.RemoveRace, ctx: HandlerContext) -> CommandOutcome:
    if state.find_race(command.race_id) is None:
        return _skip(command, f"unknown race {command.race_id}")
    state.races = [r for r in state.races if r.id != command.race_id]
    if state.current_race_id == command.race_id:
        state.current_race_id = state.races[0].id if state.races else None
    log.info("Removed race %s", command.race_id)
    return _CHANGED


# ── Riders ────────────────────────────────────────────────────────────────────

def add_rider(state: RaceState, command: cmd.AddRider, ctx: HandlerContext) -> CommandOutcome:
    race = state.current_race()
    if race is None:
        return _skip(command, "no current race")
    number, name = command.number.strip(), command.name.strip()
    if not number or not name:
        return _skip(command, "rider number and name are required")
    rider_class = (command.rider_class or "").strip() or ctx.default_class
    race.riders.append(Rider(
        id=ctx.new_id(),
        number=number,
        name=name,
        rider_class=rider_class,
    ))
    update_positions_only(race)
    update_current_lap(race)
    return _CHANGED


def remove_rider(state: RaceState, command: cmd.RemoveRider, ctx: HandlerContext) -> CommandOutcome:
    race, rider = _rider_of(state, command.rider_id)
    if race is None:
        return _skip(command, "no current race")
    if rider is None:
        return _skip(command, f"unknown rider {command.rider_id}")
    race.riders = [r for r in race.riders if r.id != command.rider_id]
    update_positions(race)
    update_current_lap(race)
    return _CHANGED


# ── Laps & penalties ──────────────────────────────────────────────────────────

def add_lap(state: RaceState, command: cmd.AddLap, ctx: HandlerContext) -> CommandOutcome:
    race, rider = _rider_of(state, command.rider_id)
    if race is None or not race.is_running:
        return _skip(command, "race is not running")
    if rider is None:
        return _skip(command, f"unknown rider {command.rider_id}")
    record_lap(race, rider, ctx.now_ms)
    update_positions_only(race)
    update_current_lap(race)
    return _CHANGED


def remove_lap(state: RaceState, command: cmd.RemoveLap, ctx: HandlerContext) -> CommandOutcome:
    race, rider = _rider_of(state, command.rider_id)
    if race is None or not race.is_running:
        return _skip(command, "race is not running")
    if rider is None:
        return _skip(command, f"unknown rider {command.rider_id}")
    if rider.laps == 0:
        return _skip(command, f"rider {rider.id} has no laps")
    undo_lap(race, rider)
    update_positions_only(race)
    update_current_lap(race)
    return _CHANGED


def penalize(state: RaceState, command: cmd.AddPenalty, ctx: HandlerContext) -> CommandOutcome:
    race, rider = _rider_of(state, command.rider_id)
    if race is None:
        return _skip(command, "no current race")
    if rider is None:
        return _skip(command, f"unknown rider {command.rider_id}")
    add_penalty(rider, ctx.penalty_ms)
    update_positions_only(race)
    return _CHANGED


# ── Race flow ─────────────────────────────────────────────────────────────────

def start_race(state: RaceState, command: cmd.StartRace, ctx: HandlerContext) -> CommandOutcome:
    race = state.current_race()
    if race is None:
        return _skip(command, "no current race")
    if not race.riders:
        return _skip(command, "race has no riders")
    race.is_running = True
    race.start_time = ctx.now_ms
    update_current_lap(race)
    log.info("Race %s started", race.id)
    return _CHANGED


def finish_race(state: RaceState, command: cmd.FinishRace, ctx: HandlerContext) -> CommandOutcome:
    race = state.current_race()
    if race is None:
        return _skip(command, "no current race")
    race.is_running = False
    log.info("Race %s finished", race.id)
    return CommandOutcome(changed=True, finished_race=race.model_copy(deep=True))


def stop_race(state: RaceState, command: cmd.StopRace, ctx: HandlerContext) -> CommandOutcome:
    race = state.current_race()
    if race is None:
        return _skip(command, "no current race")
    race.is_running = False
    return _CHANGED


def reset_race(state: RaceState, command: cmd.ResetRace, ctx: HandlerContext) -> CommandOutcome:
    race = state.current_race()
    if race is None:
        return _skip(command, "no current race")
    for rider in race.riders:
        reset_rider(rider, len(race.riders))
    race.is_running = False
    race.start_time = None
    race.current_lap = 0
    log.info("Race %s reset", race.id)
    return _CHANGED


def sort_riders(state: RaceState, command: cmd.SortRiders, ctx: HandlerContext) -> CommandOutcome:
    race = state.current_race()
    if race is None:
        return _skip(command, "no current race")
    update_positions(race)
    return _CHANGED


# ── Classes ───────────────────────────────────────────────────────────────────

def add_class(state: RaceState, command: cmd.AddClass, ctx: HandlerContext) -> CommandOutcome:
    race = state.current_race()
    if race is None:
        return _skip(command, "no current race")
    name = command.name.strip()
    if not name:
        return _skip(command, "empty class name")
    if name in race.classes:
        return _skip(command, f"class {name!r} already exists")
    race.classes.append(name)
    return _CHANGED


def remove_class(state: RaceState, command: cmd.RemoveClass, ctx: HandlerContext) -> CommandOutcome:
    race = state.current_race()
    if race is None:
        return _skip(command, "no current race")
    affected = [r for r in race.riders if r.rider_class == command.name]
    if command.name not in race.classes and not affected:
        return _skip(command, f"unknown class {command.name!r}")
    race.classes = [c for c in race.classes if c != command.name]
    for rider in affected:
        rider.rider_class = ""
    update_positions_only(race)
    return _CHANGED


# ── Dispatch ──────────────────────────────────────────────────────────────────

HANDLERS = {
    cmd.CreateRace: create_race,
    cmd.SelectRace: select_race,
    cmd.RemoveRace: remove_race,
    cmd.AddRider: add_rider,
    cmd.RemoveRider: remove_rider,
    cmd.AddLap: add_lap,
    cmd.RemoveLap: remove_lap,
    cmd.StartRace: start_race,
    cmd.FinishRace: finish_race,
    cmd.StopRace: stop_race,
    cmd.ResetRace: reset_race,
    cmd.SortRiders: sort_riders,
    cmd.AddClass: add_class,
    cmd.RemoveClass: remove_class,
    cmd.AddPenalty: penalize,
}


def apply_command(state: RaceState, command, ctx: HandlerContext) -> CommandOutcome:
    handler = HANDLERS.get(type(command))
    if handler is None:
        log.warning("No handler for command %r", command)
        return _UNCHANGED
    return handler(state, command, ctx)
