"""Event types carried by the session stream.

Each SSE frame's JSON payload is parsed into a typed dataclass
keyed by its ``type`` discriminator.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import DecodeError
from .models import TodoItem, TodoStatus


@dataclass(frozen=True)
class StreamEvent:
    """Base event decoded from the session stream."""
    event_type: str = ""
    frame: str = "message"


@dataclass(frozen=True)
class Progress(StreamEvent):
    event_type: str = "progress"
    message: str = ""


@dataclass(frozen=True)
class Content(StreamEvent):
    """A piece of the assistant response. Appended, never replacing."""
    event_type: str = "content"
    text: str = ""


@dataclass(frozen=True)
class TodoUpdate(StreamEvent):
    event_type: str = "todo_update"
    items: tuple[TodoItem, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StepComplete(StreamEvent):
    event_type: str = "step_complete"
    step: str = ""


@dataclass(frozen=True)
class Complete(StreamEvent):
    """Terminal success."""
    event_type: str = "complete"


@dataclass(frozen=True)
class Error(StreamEvent):
    """Terminal failure reported by the service."""
    event_type: str = "error"
    message: str = ""


TERMINAL_EVENTS = (Complete, Error)


def _text(payload: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return str(value)
    return ""


def _parse_todos(raw: Any) -> tuple[TodoItem, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise DecodeError(f"todos must be a list, got {type(raw).__name__}")
    items: list[TodoItem] = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise DecodeError("todo entry is not an object")
        status = entry.get("status", TodoStatus.PENDING.value)
        try:
            parsed_status = TodoStatus(status)
        except ValueError:
            raise DecodeError(f"unknown todo status: {status!r}") from None
        items.append(TodoItem(content=str(entry.get("content", "")), status=parsed_status))
    return tuple(items)


def _progress(payload: dict[str, Any], frame: str) -> StreamEvent:
    return Progress(frame=frame, message=_text(payload, "message"))


def _content(payload: dict[str, Any], frame: str) -> StreamEvent:
    return Content(frame=frame, text=_text(payload, "message", "content", "text"))


def _todo_update(payload: dict[str, Any], frame: str) -> StreamEvent:
    return TodoUpdate(frame=frame, items=_parse_todos(payload.get("todos")))


def _step_complete(payload: dict[str, Any], frame: str) -> StreamEvent:
    return StepComplete(frame=frame, step=_text(payload, "step", "message"))


def _complete(payload: dict[str, Any], frame: str) -> StreamEvent:
    return Complete(frame=frame)


def _error(payload: dict[str, Any], frame: str) -> StreamEvent:
    return Error(frame=frame, message=_text(payload, "message", "error") or "unknown error")


# Map of payload ``type`` strings to event builders
_EVENT_MAP = {
    "progress": _progress,
    "content": _content,
    "message": _content,
    "todo_update": _todo_update,
    "step_complete": _step_complete,
    "complete": _complete,
    "error": _error,
}


def payload_to_event(payload: Any, frame: str = "message") -> StreamEvent:
    """Convert a decoded JSON payload to a typed event.

    Raises DecodeError for non-object payloads, unknown ``type``
    values and invalid field contents.
    """
    if not isinstance(payload, dict):
        raise DecodeError(f"payload is not a JSON object: {type(payload).__name__}")
    event_type = payload.get("type")
    builder = _EVENT_MAP.get(event_type) if isinstance(event_type, str) else None
    if builder is None:
        raise DecodeError(f"unrecognized event type: {event_type!r}")
    return builder(payload, frame)


def event_to_dict(event: StreamEvent) -> dict[str, Any]:
    """Convert a typed event to a plain dict for JSON serialization."""
    d: dict[str, Any] = {"event": event.event_type, "frame": event.frame}
    if isinstance(event, (Progress, Error)):
        d["message"] = event.message
    elif isinstance(event, Content):
        d["text"] = event.text
    elif isinstance(event, TodoUpdate):
        d["todos"] = [
            {"content": item.content, "status": item.status.value}
            for item in event.items
        ]
    elif isinstance(event, StepComplete):
        d["step"] = event.step
    return d
