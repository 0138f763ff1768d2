"""Session monitor: drives one session's event stream to a terminal state.

Reads ``GET /api/v1/sse?session_id=...`` one chunk at a time, decodes
frames, applies each event to the Session and forwards it to the
sink. The loop ends on the first terminal condition:

    Complete event            -> completed (response flushed to sink once)
    Error event               -> failed(message)
    cancel_event set          -> stop request sent, stopped
    no data for idle timeout  -> failed("timeout")
    end of stream             -> failed("stream closed unexpectedly")

Cancellation is cooperative. It is checked before every read and
again when a read returns; an in-flight read is never interrupted,
and once cancellation is seen nothing further is applied.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import aiohttp

from .api import ApiClient
from .errors import ReflexibleError, TransportError
from .events import Complete, Content, Error, StepComplete, StreamEvent, TodoUpdate
from .lifecycle import validate_transition
from .models import Outcome, Session, SessionState
from .sink import SessionSink
from .sse import DecodeErrorHook, SSEDecoder

logger = logging.getLogger(__name__)

STREAM_PATH = "/api/v1/sse"
STOP_PATH = "/api/v1/agent/stop"

STREAM_CLOSED_REASON = "stream closed unexpectedly"
TIMEOUT_REASON = "timeout"


def _cancelled(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class SessionMonitor:
    """Shared stream pump for every presentation layer."""

    def __init__(
        self,
        api: ApiClient,
        *,
        idle_timeout: float | None = 300.0,
        on_decode_error: DecodeErrorHook | None = None,
    ) -> None:
        self._api = api
        self._idle_timeout = idle_timeout
        self._on_decode_error = on_decode_error

    async def monitor(
        self,
        session: Session,
        sink: SessionSink | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> Outcome:
        """Follow *session* until it reaches a terminal state.

        Raises:
            ValueError: the session is already terminal.
            AuthExpiredError / RemoteError: the stream could not be opened.
            TransportError: the connection failed mid-stream.

        The session is marked failed before any of these propagate.
        """
        if session.is_terminal:
            raise ValueError(
                f"Session {session.session_id} is already {session.state.value}"
            )
        sink = sink if sink is not None else SessionSink()

        if _cancelled(cancel_event):
            return await self._stop(session)

        try:
            return await self._pump(session, sink, cancel_event)
        except ReflexibleError as exc:
            # The stream could not be opened, or broke mid-read.
            if not session.is_terminal:
                self._finish(session, Outcome.failed(str(exc)))
            raise

    async def _pump(
        self,
        session: Session,
        sink: SessionSink,
        cancel_event: asyncio.Event | None,
    ) -> Outcome:
        decoder = SSEDecoder(on_decode_error=self._on_decode_error)
        params = {"session_id": session.session_id}
        async with self._api.stream(STREAM_PATH, params=params) as resp:
            while True:
                if _cancelled(cancel_event):
                    return await self._stop(session)

                try:
                    chunk = await asyncio.wait_for(
                        resp.content.readany(), timeout=self._idle_timeout,
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        "Session %s: no data for %ss, giving up",
                        session.session_id, self._idle_timeout,
                    )
                    return self._finish(session, Outcome.failed(TIMEOUT_REASON))
                except aiohttp.ClientError as exc:
                    reason = f"{type(exc).__name__}: {exc}"
                    self._finish(session, Outcome.failed(reason))
                    raise TransportError(STREAM_PATH, reason) from exc

                if _cancelled(cancel_event):
                    return await self._stop(session)

                events = decoder.feed(chunk) if chunk else decoder.flush()
                for event in events:
                    outcome = await self._apply(session, event, sink)
                    if outcome is not None:
                        return outcome

                if not chunk:
                    logger.warning(
                        "Session %s: stream ended without a terminal event",
                        session.session_id,
                    )
                    return self._finish(session, Outcome.failed(STREAM_CLOSED_REASON))

    async def request_stop(self, session_id: str) -> bool:
        """Ask the service to stop a session. Best effort, never raises."""
        try:
            await self._api.request_json(
                "POST", STOP_PATH, payload={"sessionId": session_id},
            )
        except ReflexibleError as exc:
            logger.warning("Failed to stop session %s: %s", session_id, exc)
            return False
        logger.info("Stop requested for session %s", session_id)
        return True

    async def _stop(self, session: Session) -> Outcome:
        await self.request_stop(session.session_id)
        return self._finish(session, Outcome.stopped())

    async def _apply(
        self,
        session: Session,
        event: StreamEvent,
        sink: SessionSink,
    ) -> Outcome | None:
        """Apply one event; return an Outcome if it was terminal."""
        if session.state is SessionState.DISPATCHED:
            self._transition(session, SessionState.STREAMING)

        if isinstance(event, Complete):
            if session.response:
                await self._notify_message(sink, session, session.response)
            await self._notify_event(sink, session, event)
            return self._finish(session, Outcome.completed())

        if isinstance(event, Error):
            await self._notify_event(sink, session, event)
            return self._finish(session, Outcome.failed(event.message))

        if isinstance(event, Content):
            session.append_content(event.text)
        elif isinstance(event, TodoUpdate):
            session.replace_todos(event.items)
        elif isinstance(event, StepComplete):
            session.add_step(event.step)
        await self._notify_event(sink, session, event)
        return None

    @staticmethod
    def _transition(session: Session, target: SessionState) -> None:
        validate_transition(session.state, target)
        logger.debug(
            "Session %s: %s -> %s", session.session_id, session.state.value, target.value,
        )
        session.state = target

    def _finish(self, session: Session, outcome: Outcome) -> Outcome:
        self._transition(session, outcome.state)
        session.error = outcome.reason
        session.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Session %s finished: %s%s",
            session.session_id,
            outcome.state.value,
            f" ({outcome.reason})" if outcome.reason else "",
        )
        return outcome

    @staticmethod
    async def _notify_event(sink: SessionSink, session: Session, event: StreamEvent) -> None:
        try:
            await sink.on_event(session, event)
        except Exception:
            # Presentation failures must not derail the session
            logger.exception("Sink failed handling %s event", event.event_type)

    @staticmethod
    async def _notify_message(sink: SessionSink, session: Session, text: str) -> None:
        try:
            await sink.on_message(session, text)
        except Exception:
            logger.exception("Sink failed handling final message")
