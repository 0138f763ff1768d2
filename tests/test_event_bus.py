"""EventBus sink adapter."""

from __future__ import annotations

import asyncio

import pytest

from reflexible.adapters.event_bus import EventBus
from reflexible.engine.events import Complete, Content, TodoUpdate
from reflexible.engine.models import ComputeTier, Session, TodoItem, TodoStatus


def _session() -> Session:
    return Session(session_id="sess-1", context_id="proj-1", tier=ComputeTier.BASIC)


@pytest.mark.asyncio
async def test_events_and_message_become_plain_dicts():
    bus = EventBus()
    session = _session()
    await bus.on_event(session, Content(text="hi"))
    await bus.on_event(session, TodoUpdate(items=(TodoItem("a", TodoStatus.COMPLETED),)))
    await bus.on_message(session, "hi")
    await bus.on_event(session, Complete())

    assert bus.drain() == [
        {"kind": "event", "session_id": "sess-1", "event": "content", "frame": "message", "text": "hi"},
        {
            "kind": "event", "session_id": "sess-1", "event": "todo_update", "frame": "message",
            "todos": [{"content": "a", "status": "completed"}],
        },
        {"kind": "message", "session_id": "sess-1", "text": "hi"},
        {"kind": "event", "session_id": "sess-1", "event": "complete", "frame": "message"},
    ]


@pytest.mark.asyncio
async def test_consume_ends_after_close_and_backlog():
    bus = EventBus()
    session = _session()
    await bus.on_message(session, "one")
    await bus.on_message(session, "two")
    bus.close()
    await bus.on_message(session, "ignored")

    items = [item async for item in bus.consume()]
    assert [item["text"] for item in items] == ["one", "two"]


@pytest.mark.asyncio
async def test_full_queue_drops_after_put_timeout():
    bus = EventBus(maxsize=1, put_timeout=0.01)
    session = _session()
    await bus.on_message(session, "kept")
    await bus.on_message(session, "dropped")
    assert [item["text"] for item in bus.drain()] == ["kept"]


@pytest.mark.asyncio
async def test_reset_reopens_bus():
    bus = EventBus()
    await bus.on_message(_session(), "stale")
    bus.close()
    bus.reset()
    assert not bus.closed
    assert bus.drain() == []
    consumer = asyncio.ensure_future(bus.consume().__anext__())
    await bus.on_message(_session(), "fresh")
    assert (await asyncio.wait_for(consumer, 1.0))["text"] == "fresh"
