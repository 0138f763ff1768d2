"""Exception hierarchy for the session orchestrator.

Specific exceptions for each failure mode. Only DecodeError is
recovered inside the core; everything else reaches the caller.
"""
from __future__ import annotations


class ReflexibleError(Exception):
    """Base exception for all orchestrator errors."""


class AuthExpiredError(ReflexibleError):
    """Credential missing, invalid or expired. Caller must re-authenticate."""
    def __init__(self, reason: str, status: int | None = None):
        self.reason = reason
        self.status = status
        if status is None:
            super().__init__(f"Authentication required: {reason}")
        else:
            super().__init__(f"Authentication failed ({status}): {reason}")


class RemoteError(ReflexibleError):
    """The service answered with a non-2xx, non-auth status."""
    def __init__(self, status: int, body: str, endpoint: str = ""):
        self.status = status
        self.body = body
        self.endpoint = endpoint
        where = f" from {endpoint}" if endpoint else ""
        super().__init__(f"Remote error {status}{where}: {body[:200]}")


class ProtocolError(ReflexibleError):
    """A well-formed response is missing a required field."""
    def __init__(self, endpoint: str, detail: str):
        self.endpoint = endpoint
        self.detail = detail
        super().__init__(f"Unexpected response from {endpoint}: {detail}")


class DecodeError(ReflexibleError):
    """A single SSE frame could not be decoded. The frame is dropped."""
    def __init__(self, reason: str, frame: bytes = b""):
        self.reason = reason
        self.frame = frame
        super().__init__(f"Dropped malformed frame: {reason}")


class TransportError(ReflexibleError):
    """Connection-level failure (DNS, reset, TLS, ...)."""
    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"Transport failure on {endpoint}: {reason}")


class DispatchError(ReflexibleError):
    """The dispatch call failed. The underlying error is chained."""
    def __init__(self, context_id: str, reason: str):
        self.context_id = context_id
        self.reason = reason
        super().__init__(
            f"Failed to dispatch session in project {context_id}: {reason}"
        )


class UserCancelledError(ReflexibleError):
    """The session was stopped at the caller's request."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} cancelled by user")


class SessionFailedError(ReflexibleError):
    """The session reached the failed state."""
    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Session {session_id} failed: {reason}")


class SessionBusyError(ReflexibleError):
    """Another session is already being monitored for this workspace."""
    def __init__(self, workspace_id: str, session_id: str | None):
        self.workspace_id = workspace_id
        self.session_id = session_id
        active = session_id or "<dispatching>"
        super().__init__(
            f"Workspace {workspace_id} already has an active session: {active}"
        )
