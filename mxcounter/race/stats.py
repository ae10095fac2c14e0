"""Read-only race summaries and rider CSV import/export."""
from __future__ import annotations

import csv
import io

from mxcounter.models import Race, Rider
from mxcounter.race.ranking import ranked_groups

CSV_HEADER = ["Number", "Name", "Class", "Laps", "Position", "Total Time", "Penalty"]


def race_stats(race: Race) -> dict:
    active = [r for r in race.riders if r.is_active]
    leader_laps = max((r.laps for r in active), default=0)
    average = sum(r.laps for r in active) / len(active) if active else 0.0
    progress = min(leader_laps / race.max_laps * 100, 100.0) if race.max_laps > 0 else 0.0
    return {
        "raceId": race.id,
        "totalRiders": len(race.riders),
        "activeRiders": len(active),
        "leaderLaps": leader_laps,
        "averageLaps": round(average, 2),
        "raceProgress": progress,
        "finished": is_race_finished(race),
        "podium": {
            label: [r.to_wire() for r in group[:3]]
            for label, group in ranked_groups(active).items()
        },
    }


def is_race_finished(race: Race) -> bool:
    """True once the leading active rider has reached max_laps."""
    active = [r for r in race.riders if r.is_active]
    if not active:
        return False
    return max(r.laps for r in active) >= race.max_laps


# ── CSV ───────────────────────────────────────────────────────────────────────

def riders_to_csv(riders: list[Rider]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for r in riders:
        if not r.is_active:
            continue
        writer.writerow([r.number, r.name, r.rider_class, r.laps, r.position, r.total_time, r.penalty_ms])
    return buf.getvalue()


def parse_riders_csv(text: str) -> list[dict]:
    """Parse ``number,name[,class]`` lines into addRider payloads.

    A first line mentioning "Number" or "Name" is treated as a header. Lines
    missing a number or a name are skipped.
    """
    rows = list(csv.reader(io.StringIO(text.strip())))
    if rows and any(cell.strip() in ("Number", "Name") for cell in rows[0]):
        rows = rows[1:]

    riders = []
    for row in rows:
        cells = [c.strip() for c in row]
        if len(cells) < 2 or not cells[0] or not cells[1]:
            continue
        payload = {"type": "addRider", "number": cells[0], "name": cells[1]}
        if len(cells) > 2 and cells[2]:
            payload["class"] = cells[2]
        riders.append(payload)
    return riders
