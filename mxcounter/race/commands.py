"""Client command envelopes.

Every inbound message is a JSON object ``{"type": <command>, ...fields}``.
It is decoded exactly once, at the transport boundary, into one of the models
below; handlers never see raw dicts.
"""
from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from mxcounter.models import CamelModel


class CreateRace(CamelModel):
    type: Literal["createRace"]
    name: str


class SelectRace(CamelModel):
    type: Literal["selectRace"]
    race_id: Optional[str]          # null clears the selection


class RemoveRace(CamelModel):
    type: Literal["removeRace"]
    race_id: str


class AddRider(CamelModel):
    type: Literal["addRider"]
    number: str
    name: str
    rider_class: Optional[str] = Field(None, alias="class")


class RemoveRider(CamelModel):
    type: Literal["removeRider"]
    rider_id: str


class AddLap(CamelModel):
    type: Literal["addLap"]
    rider_id: str


class RemoveLap(CamelModel):
    type: Literal["removeLap"]
    rider_id: str


class StartRace(CamelModel):
    type: Literal["startRace"]


class FinishRace(CamelModel):
    type: Literal["finishRace"]


class StopRace(CamelModel):
    """Legacy clients stop the clock without publishing results."""
    type: Literal["stopRace"]


class ResetRace(CamelModel):
    type: Literal["resetRace"]


class SortRiders(CamelModel):
    type: Literal["sortRiders"]


class AddClass(CamelModel):
    type: Literal["addClass"]
    name: str


class RemoveClass(CamelModel):
    type: Literal["removeClass"]
    name: str


class AddPenalty(CamelModel):
    type: Literal["addPenalty"]
    rider_id: str


Command = Annotated[
    Union[
        CreateRace, SelectRace, RemoveRace,
        AddRider, RemoveRider,
        AddLap, RemoveLap,
        StartRace, FinishRace, StopRace, ResetRace, SortRiders,
        AddClass, RemoveClass,
        AddPenalty,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[Command] = TypeAdapter(Command)


def parse_command(raw: Union[str, bytes]) -> Command:
    """Decode a JSON message. Raises pydantic.ValidationError on bad JSON, unknown type or missing fields."""
    return _adapter.validate_json(raw)


def command_from_dict(data: dict) -> Command:
    return _adapter.validate_python(data)
