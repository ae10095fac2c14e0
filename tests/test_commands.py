import pytest
from pydantic import ValidationError

from mxcounter.race import commands as cmd
from mxcounter.race.commands import command_from_dict, parse_command


def test_decodes_each_command_to_its_own_model():
    assert isinstance(parse_command('{"type": "startRace"}'), cmd.StartRace)
    lap = parse_command('{"type": "addLap", "riderId": "17"}')
    assert isinstance(lap, cmd.AddLap) and lap.rider_id == "17"
    rider = parse_command('{"type": "addRider", "number": "12", "name": "Smith", "class": "Cross"}')
    assert isinstance(rider, cmd.AddRider)
    assert rider.rider_class == "Cross"


def test_optional_and_nullable_fields():
    assert parse_command('{"type": "addRider", "number": "1", "name": "A"}').rider_class is None
    assert parse_command('{"type": "selectRace", "raceId": null}').race_id is None


def test_legacy_stop_race_is_accepted():
    assert isinstance(command_from_dict({"type": "stopRace"}), cmd.StopRace)


def test_extra_fields_are_ignored():
    command = command_from_dict({"type": "sortRiders", "clientTs": 123})
    assert isinstance(command, cmd.SortRiders)


@pytest.mark.parametrize("raw", [
    "not json",
    '{"type": "teleport"}',
    '{"name": "no type"}',
    '{"type": "addLap"}',
    '{"type": "selectRace"}',
    '[1, 2, 3]',
])
def test_malformed_messages_raise(raw):
    with pytest.raises(ValidationError):
        parse_command(raw)
