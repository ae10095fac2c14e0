"""
Class-partitioned ranking. No I/O; mutates the Race it is given.

Riders are grouped by the literal class label ("" is a group of its own) and
ranked within their group by laps (more is better) then by total time plus
penalty (less is better). Python's sort is stable, so riders that tie on both
keep their current relative list order; nothing else breaks the tie.
"""
from __future__ import annotations

from mxcounter.models import Race, Rider


def ranking_key(rider: Rider) -> tuple[int, int]:
    return (-rider.laps, rider.ranked_time)


def ranked_groups(riders: list[Rider]) -> dict[str, list[Rider]]:
    """Class label → riders in rank order. Groups appear in order of first appearance."""
    groups: dict[str, list[Rider]] = {}
    for rider in riders:
        groups.setdefault(rider.rider_class, []).append(rider)
    return {label: sorted(group, key=ranking_key) for label, group in groups.items()}


def update_positions(race: Race) -> None:
    """Full re-rank: assign positions and rebuild race.riders in rank order."""
    ordered: list[Rider] = []
    for group in ranked_groups(race.riders).values():
        for index, rider in enumerate(group):
            rider.position = index + 1
            ordered.append(rider)
    race.riders = ordered


def update_positions_only(race: Race) -> None:
    """Assign positions but leave race.riders in its existing order.

    Used after every lap/penalty change so the operator's grid of rider tiles
    does not reshuffle mid-race.
    """
    for group in ranked_groups(race.riders).values():
        for index, rider in enumerate(group):
            rider.position = index + 1
