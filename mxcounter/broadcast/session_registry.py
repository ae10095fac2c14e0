"""
In-memory fan-out to connected clients.

One bounded asyncio.Queue per connected WebSocket client. The coordinator
pushes full-state snapshots in; each WebSocket handler drains its own queue.
Every snapshot supersedes the previous one, so a client that falls behind
loses its oldest queued messages rather than stalling the broadcaster.
"""
from __future__ import annotations

import asyncio
import logging

from mxcounter.config import SESSION_QUEUE_SIZE

log = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self, queue_size: int = SESSION_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._queues: set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._queues.add(q)
        log.info("Client connected (%d total)", len(self._queues))
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        if q in self._queues:
            self._queues.discard(q)
            log.info("Client disconnected (%d total)", len(self._queues))

    def send(self, q: asyncio.Queue, message: dict) -> None:
        """Queue a message for one client, dropping its oldest message if the queue is full."""
        while True:
            try:
                q.put_nowait(message)
                return
            except asyncio.QueueFull:
                try:
                    q.get_nowait()
                except asyncio.QueueEmpty:
                    pass

    async def broadcast(self, message: dict) -> None:
        for q in list(self._queues):
            self.send(q, message)

    def subscriber_count(self) -> int:
        return len(self._queues)
