import asyncio
import json

from mxcounter.broadcast.session_registry import SessionRegistry
from mxcounter.coordinator import RaceCoordinator
from mxcounter.models import RaceState
from mxcounter.results.publisher import ResultsPublisher
from mxcounter.storage import default_state


def _drain(q):
    out = []
    while not q.empty():
        out.append(q.get_nowait())
    return out


def _coordinator(tmp_path, clock, state=None, publisher=None):
    return RaceCoordinator(
        state if state is not None else default_state(),
        tmp_path / "race_data.json",
        SessionRegistry(),
        publisher=publisher,
        clock=clock,
    )


def test_connect_sends_snapshot_to_new_client_only(tmp_path, clock):
    async def go():
        coord = _coordinator(tmp_path, clock)
        first = coord.connect()
        _drain(first)
        second = coord.connect()
        assert _drain(first) == []
        [msg] = _drain(second)
        assert msg["type"] == "state"
        assert msg["data"]["currentRaceId"] == "default"
        assert coord.registry.subscriber_count() == 2
        coord.disconnect(second)
        assert coord.registry.subscriber_count() == 1

    asyncio.run(go())


def test_mutation_persists_then_broadcasts(tmp_path, clock):
    async def go():
        coord = _coordinator(tmp_path, clock)
        q = coord.connect()
        _drain(q)
        applied = await coord.handle_message(json.dumps({"type": "addRider", "number": "12", "name": "Smith"}))
        assert applied
        [msg] = _drain(q)
        assert msg["data"]["races"][0]["riders"][0]["name"] == "Smith"
        on_disk = json.loads((tmp_path / "race_data.json").read_text())
        assert on_disk == msg["data"]

    asyncio.run(go())


def test_noop_commands_do_not_broadcast_or_save(tmp_path, clock):
    async def go():
        coord = _coordinator(tmp_path, clock)
        await coord.handle_message('{"type": "addRider", "number": "12", "name": "Smith"}')
        await coord.handle_message('{"type": "startRace"}')
        q = coord.connect()
        _drain(q)
        saved = (tmp_path / "race_data.json").read_text()
        rider_id = coord.snapshot()["data"]["races"][0]["riders"][0]["id"]

        assert not await coord.handle_message(json.dumps({"type": "removeLap", "riderId": rider_id}))
        assert not await coord.handle_message("{broken")
        assert not await coord.handle_message('{"type": "warpDrive"}')
        assert _drain(q) == []
        assert (tmp_path / "race_data.json").read_text() == saved

    asyncio.run(go())


def test_ids_are_unique_and_increasing_within_one_millisecond(tmp_path, clock):
    async def go():
        coord = _coordinator(tmp_path, clock, state=RaceState())
        for name in ("A", "B", "C"):
            await coord.handle_message(json.dumps({"type": "createRace", "name": name}))
        ids = [r["id"] for r in coord.snapshot()["data"]["races"]]
        assert len(set(ids)) == 3
        assert [int(i) for i in ids] == sorted(int(i) for i in ids)

    asyncio.run(go())


def test_concurrent_laps_are_serialized(tmp_path, clock):
    async def go():
        coord = _coordinator(tmp_path, clock)
        for n in range(5):
            await coord.handle_message(json.dumps({"type": "addRider", "number": str(n), "name": f"R{n}"}))
        await coord.handle_message('{"type": "startRace"}')
        clock.advance(60_000)
        ids = [r["id"] for r in coord.snapshot()["data"]["races"][0]["riders"]]
        results = await asyncio.gather(*[
            coord.handle_message(json.dumps({"type": "addLap", "riderId": i}))
            for i in ids * 2
        ])
        assert all(results)
        race = coord.snapshot()["data"]["races"][0]
        assert race["currentLap"] == 2
        assert all(r["laps"] == 2 for r in race["riders"])
        assert all(r["totalTime"] == sum(r["lapTimes"]) for r in race["riders"])

    asyncio.run(go())


def test_persistence_failure_keeps_serving(tmp_path, clock):
    blocker = tmp_path / "blocker"
    blocker.write_text("")

    async def go():
        coord = RaceCoordinator(default_state(), blocker / "race_data.json", SessionRegistry(), clock=clock)
        q = coord.connect()
        _drain(q)
        assert await coord.handle_message('{"type": "addRider", "number": "1", "name": "A"}')
        [msg] = _drain(q)
        assert len(msg["data"]["races"][0]["riders"]) == 1
        assert await coord.flush() is False

    asyncio.run(go())


def test_finish_race_twice_publishes_twice(tmp_path, clock):
    results = tmp_path / "results.html"

    async def go():
        coord = _coordinator(tmp_path, clock, publisher=ResultsPublisher(results))
        await coord.handle_message('{"type": "addRider", "number": "1", "name": "A"}')
        await coord.handle_message('{"type": "startRace"}')
        assert await coord.handle_message('{"type": "finishRace"}')
        assert await coord.handle_message('{"type": "finishRace"}')

    asyncio.run(go())
    assert results.read_text().count("<h2>Default Race</h2>") == 2


def test_slow_client_keeps_newest_snapshots(tmp_path, clock):
    async def go():
        registry = SessionRegistry(queue_size=2)
        q = registry.subscribe()
        for n in range(5):
            await registry.broadcast({"type": "state", "n": n})
        assert [m["n"] for m in _drain(q)] == [3, 4]

    asyncio.run(go())
