"""Core data models for the session orchestrator.

All dataclasses and enums. Single source of truth
to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath


class ComputeTier(str, Enum):
    """Cost/capability level of a dispatched session."""
    CHAT = "chat"  # interactive, fast responses
    BASIC = "basic"  # full code generation
    PRO = "pro"  # advanced reasoning

    @classmethod
    def parse(cls, value: str | ComputeTier) -> ComputeTier:
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        aliases = {
            "interactive": cls.CHAT,
            "standard": cls.BASIC,
            "advanced": cls.PRO,
        }
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(
                f"Unknown compute tier '{value}'. Expected one of: {valid}"
            ) from None


class SessionState(str, Enum):
    """Session lifecycle states. See lifecycle.py for transition rules."""
    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    SessionState.COMPLETED,
    SessionState.STOPPED,
    SessionState.FAILED,
})


class TodoStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DisposePolicy(str, Enum):
    """When the orchestrator tears down the execution context."""
    ON_COMPLETE = "on_complete"
    ALWAYS = "always"
    NEVER = "never"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TodoItem:
    content: str
    status: TodoStatus = TodoStatus.PENDING


@dataclass
class ExecutionContext:
    """Remote, workspace-scoped holding area ("ephemeral project")."""
    context_id: str
    created_at: datetime = field(default_factory=_utcnow)
    uploaded_file_count: int = 0


@dataclass
class Session:
    """One remote unit of work.

    Mutated only by the SessionMonitor. Once the state is terminal
    every mutator raises ValueError.
    """
    session_id: str
    context_id: str
    tier: ComputeTier
    message: str = ""
    state: SessionState = SessionState.DISPATCHED
    response: str = ""
    todos: tuple[TodoItem, ...] = ()
    steps: list[str] = field(default_factory=list)
    error: str | None = None
    dispatched_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise ValueError(
                f"Session {self.session_id} is {self.state.value}; "
                "no further events may be applied"
            )

    def append_content(self, text: str) -> None:
        self._ensure_mutable()
        self.response += text

    def replace_todos(self, items: tuple[TodoItem, ...] | list[TodoItem]) -> None:
        self._ensure_mutable()
        self.todos = tuple(items)

    def add_step(self, step: str) -> None:
        self._ensure_mutable()
        self.steps.append(step)


@dataclass(frozen=True)
class Outcome:
    """Result of monitoring a session to a terminal state."""
    state: SessionState
    reason: str | None = None

    @classmethod
    def completed(cls) -> Outcome:
        return cls(SessionState.COMPLETED)

    @classmethod
    def stopped(cls) -> Outcome:
        return cls(SessionState.STOPPED)

    @classmethod
    def failed(cls, reason: str) -> Outcome:
        return cls(SessionState.FAILED, reason)

    @property
    def is_completed(self) -> bool:
        return self.state is SessionState.COMPLETED

    @property
    def is_stopped(self) -> bool:
        return self.state is SessionState.STOPPED

    @property
    def is_failed(self) -> bool:
        return self.state is SessionState.FAILED


DEFAULT_BINARY_EXTENSIONS = frozenset({".uf2", ".bin", ".hex", ".elf"})


def is_binary_path(
    path: str,
    binary_extensions: frozenset[str] | set[str] = DEFAULT_BINARY_EXTENSIONS,
) -> bool:
    """Whether an artifact path names a binary file by extension."""
    return PurePosixPath(path).suffix.lower() in binary_extensions


@dataclass(frozen=True)
class Artifact:
    """A named output produced by a completed session."""
    path: str
    content: str | bytes
    session_id: str

    @property
    def is_binary(self) -> bool:
        return isinstance(self.content, bytes)

    def as_bytes(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")


@dataclass
class MaterializeResult:
    """Outcome of writing a session's artifacts to disk."""
    written: list = field(default_factory=list)  # list[Path]
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.written)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures
