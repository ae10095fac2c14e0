"""HTML rendering of finished races. Pure string building, no I/O."""
from __future__ import annotations

from datetime import datetime
from html import escape
from typing import Optional

from mxcounter.models import Race, Rider
from mxcounter.race.ranking import ranked_groups

UNCLASSIFIED_LABEL = "Unclassified"
CLOSING_TAG = "</body>"

_STYLE = """\
body { font-family: sans-serif; margin: 2em; }
section.race { margin-bottom: 3em; }
table { border-collapse: collapse; margin-bottom: 1.5em; }
th, td { border: 1px solid #ccc; padding: 4px 8px; text-align: right; }
td.name, th.name { text-align: left; }
"""


def format_ms(ms: Optional[int]) -> str:
    """Format a duration as ``m:ss.mmm`` (``h:mm:ss.mmm`` past an hour)."""
    if ms is None:
        return "-"
    minutes, rem = divmod(int(ms), 60_000)
    seconds, millis = divmod(rem, 1000)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}.{millis:03d}"
    return f"{minutes}:{seconds:02d}.{millis:03d}"


def average_lap(rider: Rider) -> Optional[int]:
    if not rider.lap_times:
        return None
    return round(rider.total_time / len(rider.lap_times))


def _class_table(label: str, riders: list[Rider]) -> str:
    lap_count = max((len(r.lap_times) for r in riders), default=0)
    head = ['<th>Pos</th>', '<th class="name">Rider</th>']
    head += [f"<th>Lap {i + 1}</th>" for i in range(lap_count)]
    head += ["<th>Total</th>", "<th>Average</th>", "<th>Penalty</th>"]

    rows = []
    for position, rider in enumerate(riders, start=1):
        cells = [f"<td>{position}</td>", f'<td class="name">{escape(rider.display_name)}</td>']
        laps = [format_ms(t) for t in rider.lap_times]
        laps += ["-"] * (lap_count - len(laps))
        cells += [f"<td>{t}</td>" for t in laps]
        cells.append(f"<td>{format_ms(rider.ranked_time)}</td>")
        cells.append(f"<td>{format_ms(average_lap(rider))}</td>")
        cells.append(f"<td>{format_ms(rider.penalty_ms) if rider.penalty_ms else '-'}</td>")
        rows.append("<tr>" + "".join(cells) + "</tr>")

    return (
        f"<h3>{escape(label or UNCLASSIFIED_LABEL)}</h3>\n"
        "<table>\n"
        f"<thead><tr>{''.join(head)}</tr></thead>\n"
        "<tbody>\n" + "\n".join(rows) + "\n</tbody>\n"
        "</table>"
    )


def render_race_section(race: Race, finished_at: datetime) -> str:
    tables = [_class_table(label, group) for label, group in ranked_groups(race.riders).items()]
    body = "\n".join(tables) if tables else "<p>No riders.</p>"
    return (
        f'<section class="race" data-race-id="{escape(race.id)}">\n'
        f"<h2>{escape(race.name)}</h2>\n"
        f"<p class=\"finished\">Finished {finished_at.strftime('%Y-%m-%d %H:%M:%S')}</p>\n"
        f"{body}\n"
        "</section>\n"
    )


def new_document(title: str = "Race Results") -> str:
    return (
        "<!DOCTYPE html>\n"
        "<html>\n<head>\n<meta charset=\"utf-8\">\n"
        f"<title>{escape(title)}</title>\n"
        f"<style>\n{_STYLE}</style>\n"
        f"</head>\n<body>\n<h1>{escape(title)}</h1>\n"
        f"{CLOSING_TAG}\n</html>\n"
    )


def append_section(document: str, section: str) -> str:
    """Insert a section before the last closing body tag, or append it if there is none."""
    idx = document.rfind(CLOSING_TAG)
    if idx == -1:
        return document + section
    return document[:idx] + section + document[idx:]
