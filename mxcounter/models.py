"""Pydantic models for the persisted and broadcast race state.

Attributes are snake_case in Python; the wire and on-disk layout is camelCase
(``lapTimes``, ``currentRaceId`` …) via an alias generator.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from mxcounter.config import DEFAULT_MAX_LAPS


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ── Rider ─────────────────────────────────────────────────────────────────────

class Rider(CamelModel):
    id: str
    number: str
    name: str
    rider_class: str = Field("", alias="class")
    laps: int = Field(0, ge=0)
    lap_times: list[int] = Field(default_factory=list)   # ms per completed lap
    total_time: int = 0                                  # ms, sum(lap_times)
    position: int = Field(1, ge=1)                       # rank within rider_class
    last_lap_time: Optional[int] = None                  # epoch ms of last crossing
    previous_lap_time: Optional[int] = None              # ms, duration of last lap
    penalty_ms: int = Field(0, ge=0)
    is_active: bool = True

    @field_validator("rider_class", mode="before")
    @classmethod
    def _unset_class_is_empty(cls, v):
        return "" if v is None else v

    @model_validator(mode="after")
    def _reconcile_laps(self) -> "Rider":
        """Bring ``laps`` and ``total_time`` in line with ``lap_times``.

        Older state files count laps without recording durations. The missing
        laps are filled with an even share of whatever part of ``total_time``
        the recorded durations do not cover, so the lap count survives and
        ``total_time == sum(lap_times)``.
        """
        missing = self.laps - len(self.lap_times)
        if missing > 0:
            share, rest = divmod(max(0, self.total_time - sum(self.lap_times)), missing)
            fill = [share] * missing
            fill[-1] += rest
            self.lap_times = self.lap_times + fill
        self.laps = len(self.lap_times)
        self.total_time = sum(self.lap_times)
        return self

    @property
    def display_name(self) -> str:
        return f"{self.name}#{self.number}"

    @property
    def ranked_time(self) -> int:
        return self.total_time + self.penalty_ms


# ── Race ──────────────────────────────────────────────────────────────────────

class Race(CamelModel):
    id: str
    name: str
    riders: list[Rider] = Field(default_factory=list)    # add order, not rank order
    classes: list[str] = Field(default_factory=list)
    is_running: bool = False
    start_time: Optional[int] = None                     # epoch ms
    current_lap: int = 0
    max_laps: int = DEFAULT_MAX_LAPS

    def find_rider(self, rider_id: str) -> Optional[Rider]:
        return next((r for r in self.riders if r.id == rider_id), None)


class RaceState(CamelModel):
    races: list[Race] = Field(default_factory=list)
    current_race_id: Optional[str] = None

    def find_race(self, race_id: Optional[str]) -> Optional[Race]:
        if race_id is None:
            return None
        return next((r for r in self.races if r.id == race_id), None)

    def current_race(self) -> Optional[Race]:
        return self.find_race(self.current_race_id)

    def fix_current_race(self) -> bool:
        """Point current_race_id at an existing race (or None). Returns True if it changed."""
        if self.current_race_id is None or self.current_race() is not None:
            return False
        self.current_race_id = self.races[0].id if self.races else None
        return True
