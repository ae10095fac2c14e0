import pytest

from mxcounter.models import RaceState
from mxcounter.race.commands import command_from_dict
from mxcounter.race.handlers import HandlerContext, apply_command


class Clock:
    """Manually advanced millisecond clock."""

    def __init__(self, now_ms: int = 1_000_000) -> None:
        self.now_ms = now_ms
        self._ids = 0

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> int:
        self.now_ms += ms
        return self.now_ms

    def new_id(self) -> str:
        self._ids += 1
        return f"id{self._ids:03d}"


class Driver:
    """Applies wire-shaped commands straight to a RaceState."""

    def __init__(self, state: RaceState, clock: Clock) -> None:
        self.state = state
        self.clock = clock

    def __call__(self, type_: str, **fields):
        command = command_from_dict({"type": type_, **fields})
        ctx = HandlerContext(now_ms=self.clock(), new_id=self.clock.new_id)
        return apply_command(self.state, command, ctx)

    @property
    def race(self):
        return self.state.current_race()

    def rider(self, name: str):
        return next(r for r in self.race.riders if r.name == name)


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def driver(clock):
    return Driver(RaceState(), clock)


@pytest.fixture()
def main_race(driver):
    """Scenario base: race "Main" with Smith #12 and Doe #7 in class Cross."""
    driver("createRace", name="Main")
    driver("addRider", number="12", name="Smith", **{"class": "Cross"})
    driver("addRider", number="7", name="Doe", **{"class": "Cross"})
    return driver


@pytest.fixture()
def make_driver(clock):
    """Driver factory for a state loaded from elsewhere."""
    return lambda state: Driver(state, clock)
