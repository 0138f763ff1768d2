"""Async event bus bridging the session monitor to UI consumers.

The monitor runs in one task and pushes into the bus through the
SessionSink interface. Frontends (tree views, panels, status bars)
drain it from their own consumer loop as plain dicts.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from reflexible.engine.events import StreamEvent, event_to_dict
from reflexible.engine.models import Session
from reflexible.engine.sink import SessionSink

logger = logging.getLogger(__name__)


class EventBus(SessionSink):
    """Async queue of monitor output for UI consumers.

    Items look like:
        {"kind": "event", "session_id": "...", "event": "progress", ...}
        {"kind": "message", "session_id": "...", "text": "..."}
    """

    def __init__(self, maxsize: int = 5000, put_timeout: float = 30.0) -> None:
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def on_event(self, session: Session, event: StreamEvent) -> None:
        item = {"kind": "event", "session_id": session.session_id}
        item.update(event_to_dict(event))
        await self._put(item)

    async def on_message(self, session: Session, text: str) -> None:
        await self._put({
            "kind": "message",
            "session_id": session.session_id,
            "text": text,
        })

    async def _put(self, item: dict[str, Any]) -> None:
        if self._closed:
            return
        try:
            # Backpressure instead of dropping, up to put_timeout
            await asyncio.wait_for(self._queue.put(item), timeout=self._put_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for %.0fs, dropping: %s (queue size: %d)",
                self._put_timeout,
                item.get("event", item["kind"]),
                self._queue.qsize(),
            )

    async def consume(self) -> AsyncIterator[dict[str, Any]]:
        """Yield items as they arrive. Stops once closed and drained."""
        while True:
            if self._closed and self._queue.empty():
                return
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield item

    def drain(self) -> list[dict[str, Any]]:
        """Return every queued item without waiting."""
        items: list[dict[str, Any]] = []
        while not self._queue.empty():
            items.append(self._queue.get_nowait())
        return items

    def close(self) -> None:
        """Stop accepting items; consume() ends after the backlog."""
        self._closed = True

    def reset(self) -> None:
        """Drop any backlog and re-open the bus for a new session."""
        self.drain()
        self._closed = False
