"""JSON file I/O for the race state, with per-file async locking to keep writes ordered."""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from mxcounter.config import DEFAULT_MAX_LAPS, DEFAULT_RACE_ID, DEFAULT_RACE_NAME
from mxcounter.models import Race, RaceState

log = logging.getLogger(__name__)

# One asyncio.Lock per file path, created on first access
_locks: dict[str, asyncio.Lock] = {}


def _lock_for(path: Path) -> asyncio.Lock:
    key = str(path)
    if key not in _locks:
        _locks[key] = asyncio.Lock()
    return _locks[key]


def ensure_dirs(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def default_state() -> RaceState:
    race = Race(id=DEFAULT_RACE_ID, name=DEFAULT_RACE_NAME, max_laps=DEFAULT_MAX_LAPS)
    return RaceState(races=[race], current_race_id=race.id)


# ── Save / load ───────────────────────────────────────────────────────────────

async def save_state(path: Path, state: RaceState) -> None:
    """Overwrite the state file. Raises OSError on failure."""
    payload = state.model_dump_json(by_alias=True, indent=2)
    tmp = path.with_name(path.name + ".tmp")
    async with _lock_for(path):
        ensure_dirs(path)
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, path)


async def load_state(path: Path) -> RaceState:
    """Load the persisted state, or synthesize (and save) the default one.

    A file that exists but does not validate is moved aside to
    ``<name>.corrupt`` before the default replaces it.
    """
    state = None
    if path.exists():
        async with _lock_for(path):
            data = path.read_bytes()
        try:
            state = RaceState.model_validate_json(data.decode("utf-8"))
        except (ValidationError, UnicodeDecodeError) as exc:
            log.error("Invalid state file %s, creating default state: %s", path, exc)
            os.replace(path, path.with_name(path.name + ".corrupt"))
    else:
        log.info("No state file at %s, creating default state", path)

    if state is None:
        state = default_state()
        try:
            await save_state(path, state)
        except OSError:
            log.exception("Could not write default state to %s", path)
        return state

    if state.fix_current_race():
        log.warning("currentRaceId did not match a race, reset to %s", state.current_race_id)
    log.info("Loaded %d races from %s", len(state.races), path)
    return state


def data_file_info(path: Path) -> dict:
    if not path.exists():
        return {"exists": False, "path": str(path)}
    stat = path.stat()
    return {
        "exists": True,
        "size": stat.st_size,
        "lastModified": stat.st_mtime,
        "path": str(path),
    }
