"""Presentation seam for session monitoring.

The monitor forwards every decoded event to a sink and, when the
session completes, the combined assistant response as one message.
Presentation layers subclass SessionSink or pass callbacks to
CallbackSink instead of re-implementing stream framing.
"""
from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from .events import StreamEvent
from .models import Session

logger = logging.getLogger(__name__)

# Signature: async def callback(session, event) -> None
EventCallback = Callable[[Session, StreamEvent], Awaitable[None]]
# Signature: async def callback(session, text) -> None
MessageCallback = Callable[[Session, str], Awaitable[None]]


class SessionSink:
    """Receives monitor output. The base implementation ignores everything."""

    async def on_event(self, session: Session, event: StreamEvent) -> None:
        """Called once per decoded event, in stream order."""

    async def on_message(self, session: Session, text: str) -> None:
        """Called once with the full response when the session completes."""


class CallbackSink(SessionSink):
    """Adapts plain async callbacks to the sink interface."""

    def __init__(
        self,
        on_event: EventCallback | None = None,
        on_message: MessageCallback | None = None,
    ) -> None:
        self._on_event = on_event
        self._on_message = on_message

    async def on_event(self, session: Session, event: StreamEvent) -> None:
        if self._on_event is not None:
            await self._on_event(session, event)

    async def on_message(self, session: Session, text: str) -> None:
        if self._on_message is not None:
            await self._on_message(session, text)


class RecordingSink(SessionSink):
    """Keeps everything it receives. Handy for headless callers."""

    def __init__(self) -> None:
        self.events: list[StreamEvent] = []
        self.messages: list[str] = []

    async def on_event(self, session: Session, event: StreamEvent) -> None:
        self.events.append(event)

    async def on_message(self, session: Session, text: str) -> None:
        self.messages.append(text)
