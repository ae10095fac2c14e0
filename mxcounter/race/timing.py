"""Lap and penalty accounting for a single race."""
from __future__ import annotations

from typing import Optional

from mxcounter.models import Race, Rider


def _recalc_totals(rider: Rider) -> None:
    rider.laps = len(rider.lap_times)
    rider.total_time = sum(rider.lap_times)


def update_current_lap(race: Race) -> None:
    race.current_lap = max((r.laps for r in race.riders), default=0)


def record_lap(race: Race, rider: Rider, now_ms: int) -> int:
    """Append the lap the rider just completed and return its duration in ms.

    The first lap is timed from the race start, later laps from the rider's
    previous crossing.
    """
    if rider.laps == 0 or rider.last_lap_time is None:
        since = race.start_time if race.start_time is not None else now_ms
    else:
        since = rider.last_lap_time
    duration = max(0, now_ms - since)

    rider.lap_times.append(duration)
    _recalc_totals(rider)
    rider.previous_lap_time = duration
    rider.last_lap_time = now_ms
    return duration


def undo_lap(race: Race, rider: Rider) -> Optional[int]:
    """Drop the rider's most recent lap. Returns the removed duration, or None if there was none."""
    if not rider.lap_times:
        return None
    removed = rider.lap_times.pop()
    _recalc_totals(rider)
    rider.previous_lap_time = rider.lap_times[-1] if rider.lap_times else None
    if race.start_time is None:
        rider.last_lap_time = None
    else:
        rider.last_lap_time = race.start_time + rider.total_time
    return removed


def add_penalty(rider: Rider, penalty_ms: int) -> None:
    rider.penalty_ms += penalty_ms


def reset_rider(rider: Rider, rider_count: int) -> None:
    """Clear a rider's timing back to pre-race. Penalties are kept.

    The position written here is the legacy placeholder ``ord(id[0]) % N + 1``
    that existing clients expect after a reset; it is not a ranking and is
    overwritten by the next lap, penalty or sort.
    """
    rider.lap_times = []
    _recalc_totals(rider)
    rider.last_lap_time = None
    rider.previous_lap_time = None
    first = ord(rider.id[0]) if rider.id else 0
    rider.position = first % max(rider_count, 1) + 1
