"""Server-Sent Events frame decoding.

Turns the raw byte stream of ``GET /api/v1/sse`` into typed
StreamEvents. Frames are separated by a blank line:

    event: message
    data: {"type": "content", "message": "Hello"}

    data: {"type": "complete"}

Multiple ``data:`` lines in one frame are concatenated without a
separator. Lines starting with ``:`` are comments (keepalives).

Bytes are buffered until a full frame is available, so chunk
boundaries may fall anywhere, including inside a multi-byte UTF-8
sequence or between the CR and LF of a line ending. A frame that
cannot be decoded is dropped; decoding continues with the next one.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Callable

from .errors import DecodeError
from .events import StreamEvent, payload_to_event

logger = logging.getLogger(__name__)

FRAME_DELIMITER = b"\n\n"
DEFAULT_FRAME = "message"

# Signature: def hook(error: DecodeError) -> None
DecodeErrorHook = Callable[[DecodeError], None]


class SSEDecoder:
    """Incremental decoder from byte chunks to StreamEvents."""

    def __init__(self, on_decode_error: DecodeErrorHook | None = None) -> None:
        # Normalised bytes of the frame in progress.
        self._buffer = bytearray()
        # A chunk-final CR, held back until we know whether LF follows.
        self._carry = b""
        self._on_decode_error = on_decode_error
        self.decode_errors = 0

    @property
    def pending(self) -> bytes:
        """Bytes buffered while waiting for the rest of a frame."""
        return bytes(self._buffer) + self._carry

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Buffer a chunk and return every event it completes.

        Only the new bytes are normalised and searched, so a large
        frame arriving in many small chunks costs linear time.
        """
        if not chunk:
            return []
        chunk = self._carry + chunk
        if chunk.endswith(b"\r"):
            chunk, self._carry = chunk[:-1], b"\r"
        else:
            self._carry = b""

        # A delimiter may straddle the old tail and the new bytes.
        search_from = max(len(self._buffer) - 1, 0)
        self._buffer.extend(chunk.replace(b"\r\n", b"\n"))

        events: list[StreamEvent] = []
        consumed = 0
        end = self._buffer.find(FRAME_DELIMITER, search_from)
        while end != -1:
            event = self._decode_frame(bytes(self._buffer[consumed:end]))
            if event is not None:
                events.append(event)
            consumed = end + len(FRAME_DELIMITER)
            end = self._buffer.find(FRAME_DELIMITER, consumed)
        if consumed:
            del self._buffer[:consumed]
        return events

    def flush(self) -> list[StreamEvent]:
        """Decode a trailing frame left without its blank line at end of stream."""
        remaining = self.pending
        self._buffer.clear()
        self._carry = b""
        if not remaining.strip():
            return []
        event = self._decode_frame(remaining)
        return [event] if event is not None else []

    def _decode_frame(self, segment: bytes) -> StreamEvent | None:
        try:
            return self._parse_frame(segment)
        except DecodeError as exc:
            self._report(exc, segment)
            return None

    @staticmethod
    def _parse_frame(segment: bytes) -> StreamEvent | None:
        try:
            text = segment.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"invalid UTF-8: {exc.reason}") from exc

        frame = DEFAULT_FRAME
        data_parts: list[str] = []
        for line in text.split("\n"):
            if not line or line.startswith(":"):
                continue
            if line.startswith("event:"):
                frame = line[len("event:"):].strip() or DEFAULT_FRAME
            elif line.startswith("data:"):
                data_parts.append(line[len("data:"):].strip())

        if not data_parts:
            return None

        data = "".join(data_parts)
        try:
            payload = json.loads(data)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"invalid JSON payload: {exc.msg}") from exc
        return payload_to_event(payload, frame)

    def _report(self, error: DecodeError, segment: bytes) -> None:
        self.decode_errors += 1
        if not error.frame:
            error.frame = segment
        logger.debug("%s (frame=%r)", error, segment[:200])
        if self._on_decode_error is None:
            return
        try:
            self._on_decode_error(error)
        except Exception:
            logger.exception("Decode error hook raised")
