"""Models, lifecycle transitions and event payload mapping."""

from __future__ import annotations

import pytest

from reflexible.engine.errors import DecodeError, SessionFailedError, UserCancelledError
from reflexible.engine.events import Content, Error, Progress, event_to_dict, payload_to_event
from reflexible.engine.lifecycle import VALID_TRANSITIONS, validate_transition
from reflexible.engine.models import (
    TERMINAL_STATES,
    ComputeTier,
    Outcome,
    Session,
    SessionState,
    is_binary_path,
)
from reflexible.engine.orchestrator import SessionReport


@pytest.mark.parametrize("value,expected", [
    ("chat", ComputeTier.CHAT),
    ("Interactive", ComputeTier.CHAT),
    ("standard", ComputeTier.BASIC),
    (" PRO ", ComputeTier.PRO),
    (ComputeTier.BASIC, ComputeTier.BASIC),
])
def test_compute_tier_parse(value, expected):
    assert ComputeTier.parse(value) is expected


def test_terminal_states_have_no_exits():
    for state in TERMINAL_STATES:
        assert VALID_TRANSITIONS[state] == set()
        with pytest.raises(ValueError):
            validate_transition(state, SessionState.STREAMING)


def test_streaming_cannot_return_to_dispatched():
    with pytest.raises(ValueError):
        validate_transition(SessionState.STREAMING, SessionState.DISPATCHED)
    validate_transition(SessionState.DISPATCHED, SessionState.STOPPED)


def test_binary_path_detection():
    assert is_binary_path("output/fw.UF2")
    assert not is_binary_path("output/main.c")


def test_payload_mapping_accepts_alternate_fields():
    assert payload_to_event({"type": "message", "text": "x"}) == Content(text="x")
    assert payload_to_event({"type": "error", "error": "boom"}) == Error(message="boom")
    assert payload_to_event({"type": "error"}) == Error(message="unknown error")
    assert payload_to_event({"type": "progress", "message": "p"}, "status") == Progress(
        frame="status", message="p",
    )


@pytest.mark.parametrize("payload", [[1, 2], {"no": "type"}, {"type": "mystery"}])
def test_payload_mapping_rejects_garbage(payload):
    with pytest.raises(DecodeError):
        payload_to_event(payload)


def test_event_to_dict():
    assert event_to_dict(Progress(message="p")) == {
        "event": "progress", "frame": "message", "message": "p",
    }


def test_report_raise_for_outcome():
    session = Session(session_id="s", context_id="p", tier=ComputeTier.CHAT)
    SessionReport(session, Outcome.completed()).raise_for_outcome()
    with pytest.raises(UserCancelledError):
        SessionReport(session, Outcome.stopped()).raise_for_outcome()
    with pytest.raises(SessionFailedError, match="timeout"):
        SessionReport(session, Outcome.failed("timeout")).raise_for_outcome()
