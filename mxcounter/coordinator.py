"""
Race coordinator: the single write authority for the race state.

The coordinator owns the one in-memory RaceState. Every command, from any
client or HTTP endpoint, goes through ``dispatch`` which holds one lock for
the whole apply → persist → broadcast sequence, so commands never interleave
and state files are written in command order.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Union

from pydantic import ValidationError

from mxcounter.broadcast.session_registry import SessionRegistry
from mxcounter.models import Race, RaceState
from mxcounter.race.commands import Command, parse_command
from mxcounter.race.handlers import HandlerContext, apply_command
from mxcounter.results.publisher import ResultsPublisher
from mxcounter.storage import save_state

log = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class RaceCoordinator:
    def __init__(
        self,
        state: RaceState,
        state_file: Path,
        registry: SessionRegistry,
        publisher: Optional[ResultsPublisher] = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._state = state
        self._state_file = state_file
        self._registry = registry
        self._publisher = publisher
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_id = max((int(i) for i in self._known_ids() if i.isdigit()), default=0)

    # ── Snapshots & sessions ──────────────────────────────────────────────────

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    def snapshot(self) -> dict:
        return {"type": "state", "data": self._state.to_wire()}

    def current_race(self) -> Optional[Race]:
        """Detached copy of the race in focus, for read-only endpoints."""
        race = self._state.current_race()
        return race.model_copy(deep=True) if race is not None else None

    def connect(self) -> asyncio.Queue:
        """Register a client and queue the current snapshot for it alone."""
        q = self._registry.subscribe()
        self._registry.send(q, self.snapshot())
        return q

    def disconnect(self, q: asyncio.Queue) -> None:
        self._registry.unsubscribe(q)

    # ── Commands ──────────────────────────────────────────────────────────────

    async def handle_message(self, raw: Union[str, bytes]) -> bool:
        """Decode and apply one client message. Malformed messages are logged and dropped."""
        try:
            command = parse_command(raw)
        except ValidationError as exc:
            log.warning("Dropping malformed message: %s", exc.errors(include_url=False)[:3])
            return False
        return await self.dispatch(command)

    async def dispatch(self, command: Command) -> bool:
        """Apply a decoded command. Returns True if the state changed."""
        async with self._lock:
            ctx = HandlerContext(now_ms=self._clock(), new_id=self._new_id)
            outcome = apply_command(self._state, command, ctx)
            if not outcome.changed:
                return False
            await self.on_state_changed()
            if outcome.finished_race is not None and self._publisher is not None:
                await self._publisher.publish(outcome.finished_race)
            return True

    async def on_state_changed(self) -> None:
        """Post-mutation hook: persist, then fan the new snapshot out to every client."""
        await self._persist()
        await self._registry.broadcast(self.snapshot())

    async def flush(self) -> bool:
        async with self._lock:
            return await self._persist()

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _persist(self) -> bool:
        try:
            await save_state(self._state_file, self._state)
        except OSError:
            # In-memory state stays authoritative; the next mutation retries the write.
            log.exception("Failed to save state to %s", self._state_file)
            return False
        return True

    def _known_ids(self):
        for race in self._state.races:
            yield race.id
            for rider in race.riders:
                yield rider.id

    def _new_id(self) -> str:
        """Millisecond timestamp, bumped so ids stay unique and increasing."""
        candidate = max(self._clock(), self._last_id + 1)
        self._last_id = candidate
        return str(candidate)
