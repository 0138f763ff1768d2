"""Session orchestrator: the one entry point presentation layers call.

Drives a full run for a workspace:

    acquire context -> upload inputs -> dispatch -> monitor
        -> (completed) materialize artifacts -> apply dispose policy

and exposes the standalone operations (stop, new session, cleanup,
artifact re-fetch, .rfx compile and verify). Owns the HTTP client, the workspace registry and
the optional telemetry collector.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from reflexible.shared.services.credentials import CredentialStore
from reflexible.shared.services.workspace_state import CURRENT_SESSION_ID

from .api import ApiClient
from .config import ClientConfig
from .context_manager import ContextManager
from .dispatcher import SessionDispatcher
from .errors import (
    AuthExpiredError,
    DecodeError,
    ReflexibleError,
    SessionBusyError,
    SessionFailedError,
    UserCancelledError,
)
from .materializer import ArtifactMaterializer
from .models import (
    ComputeTier,
    DisposePolicy,
    ExecutionContext,
    MaterializeResult,
    Outcome,
    Session,
)
from .monitor import SessionMonitor
from .registry import WorkspaceRegistry
from .rfx import CompileResult, RfxTools, VerifyResult
from .sink import SessionSink
from .telemetry import TelemetryCollector
from .uploader import WorkspaceUploader

logger = logging.getLogger(__name__)


@dataclass
class SessionReport:
    """Everything a caller needs after a run."""

    session: Session
    outcome: Outcome
    artifacts: MaterializeResult | None = None
    context_disposed: bool = False
    uploaded_files: int = 0

    def raise_for_outcome(self) -> None:
        """Raise UserCancelledError / SessionFailedError for non-completed runs."""
        if self.outcome.is_stopped:
            raise UserCancelledError(self.session.session_id)
        if self.outcome.is_failed:
            raise SessionFailedError(
                self.session.session_id, self.outcome.reason or "unknown error",
            )


class SessionOrchestrator:
    """Wires the context manager, dispatcher, monitor and materializer."""

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        credentials: CredentialStore | None = None,
        api: ApiClient | None = None,
        registry: WorkspaceRegistry | None = None,
        telemetry: TelemetryCollector | None = None,
        sink: SessionSink | None = None,
    ) -> None:
        self._config = config or ClientConfig.from_env()
        if credentials is None:
            credentials = CredentialStore(
                self._config.state_dir, fallback_key=self._config.api_key,
            )
        self._api = api or ApiClient(self._config, credentials)
        self._registry = registry or WorkspaceRegistry(self._config.state_dir)
        if telemetry is None and self._config.telemetry_db_path is not None:
            telemetry = TelemetryCollector(self._config.telemetry_db_path)
        self._telemetry = telemetry
        self._sink = sink or SessionSink()

        self.contexts = ContextManager(
            self._api, self._registry, self._config.project_name,
        )
        self.dispatcher = SessionDispatcher(self._api)
        self.monitor = SessionMonitor(
            self._api,
            idle_timeout=self._config.idle_timeout,
            on_decode_error=self._on_decode_error,
        )
        self.materializer = ArtifactMaterializer(
            self._api,
            prefix=self._config.artifact_prefix,
            binary_extensions=self._config.binary_extensions,
        )
        self.uploader = WorkspaceUploader(
            self._api,
            globs=self._config.upload_globs,
            excludes=self._config.upload_excludes,
        )
        self.rfx = RfxTools(self._api, self.contexts)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def registry(self) -> WorkspaceRegistry:
        return self._registry

    @property
    def credentials(self) -> CredentialStore:
        return self._api.credentials

    async def __aenter__(self) -> SessionOrchestrator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._api.close()

    # ── Full run ──

    async def run(
        self,
        workspace_root: str | Path,
        message: str,
        tier: ComputeTier | str = ComputeTier.CHAT,
        *,
        cancel_event: asyncio.Event | None = None,
        sink: SessionSink | None = None,
        upload: bool = True,
    ) -> SessionReport:
        """Run one session for *workspace_root* to a terminal state.

        Stopped and failed sessions are reported, not raised; call
        ``report.raise_for_outcome()`` for exception semantics.

        Raises:
            ValueError: empty message or unknown tier.
            SessionBusyError: a run is already active for this workspace.
            AuthExpiredError, DispatchError, ProtocolError, RemoteError,
            TransportError: see errors.py. When one of these ends the
            stream, the session is recorded as failed and the dispose
            policy is applied before it propagates.
        """
        if not message or not message.strip():
            raise ValueError("message must not be empty")
        tier = ComputeTier.parse(tier)

        entry = self._registry.get(workspace_root)
        if entry.busy:
            raise SessionBusyError(entry.workspace_id, entry.active_session_id)
        entry.busy = True
        try:
            context = await self.contexts.acquire(workspace_root)
            uploaded = 0
            if upload:
                uploaded = await self.uploader.upload(context, workspace_root)
                if uploaded:
                    self.contexts.record_upload(workspace_root, context, uploaded)

            session = await self.dispatcher.dispatch(context, message, tier)
            entry.active_session_id = session.session_id
            entry.state.update(CURRENT_SESSION_ID, session.session_id)

            try:
                outcome = await self.monitor.monitor(
                    session, sink or self._sink, cancel_event,
                )
            except ReflexibleError as exc:
                failed = SessionReport(
                    session=session,
                    outcome=Outcome.failed(session.error or str(exc)),
                    uploaded_files=uploaded,
                )
                await self._finish_run(workspace_root, context, failed)
                raise

            report = SessionReport(
                session=session, outcome=outcome, uploaded_files=uploaded,
            )

            if outcome.is_completed:
                report.artifacts = await self._materialize_into(
                    workspace_root, session.session_id,
                )

            await self._finish_run(workspace_root, context, report)
            return report
        finally:
            entry.busy = False
            entry.active_session_id = None

    async def _finish_run(
        self,
        workspace_root: str | Path,
        context: ExecutionContext,
        report: SessionReport,
    ) -> None:
        if self._should_dispose(report):
            report.context_disposed = await self.contexts.dispose(
                workspace_root, context.context_id,
            )
        self._record_run(report)

    def _should_dispose(self, report: SessionReport) -> bool:
        policy = self._config.dispose_policy
        if policy is DisposePolicy.NEVER:
            return False
        if policy is DisposePolicy.ALWAYS:
            return True
        return (
            report.outcome.is_completed
            and report.artifacts is not None
            and report.artifacts.ok
        )

    async def _materialize_into(
        self,
        workspace_root: str | Path,
        session_id: str,
    ) -> MaterializeResult:
        destination = Path(workspace_root) / self._config.artifact_dir
        try:
            return await self.materializer.materialize(session_id, destination)
        except AuthExpiredError:
            raise
        except ReflexibleError as exc:
            # The session itself completed; keep the context for a retry.
            logger.warning(
                "Could not retrieve artifacts for session %s: %s", session_id, exc,
            )
            return MaterializeResult(failures=[("<artifacts>", str(exc))])

    # ── Standalone operations ──

    def current_context(self, workspace_root: str | Path) -> ExecutionContext | None:
        return self.contexts.current(workspace_root)

    def current_session_id(self, workspace_root: str | Path) -> str | None:
        entry = self._registry.get(workspace_root)
        if entry.active_session_id:
            return entry.active_session_id
        session_id = entry.state.get(CURRENT_SESSION_ID)
        return str(session_id) if session_id else None

    async def stop(self, session_id: str) -> bool:
        """Best-effort stop request for a session running anywhere."""
        return await self.monitor.request_stop(session_id)

    def _ensure_idle(self, workspace_root: str | Path) -> None:
        entry = self._registry.get(workspace_root)
        if entry.busy:
            raise SessionBusyError(entry.workspace_id, entry.active_session_id)

    async def new_session(self, workspace_root: str | Path) -> None:
        """Start fresh: the next run creates a new context.

        Raises SessionBusyError while a run is active for the workspace.
        """
        self._ensure_idle(workspace_root)
        await self.contexts.forget(workspace_root)

    async def cleanup(self, workspace_root: str | Path) -> bool:
        """Dispose the workspace's persisted context. False if there is none.

        Raises SessionBusyError while a run is active for the workspace.
        """
        self._ensure_idle(workspace_root)
        context = self.contexts.current(workspace_root)
        if context is None:
            logger.info("No project to clean up for %s", workspace_root)
            return False
        return await self.contexts.dispose(workspace_root, context.context_id)

    async def materialize(
        self,
        workspace_root: str | Path,
        session_id: str | None = None,
    ) -> MaterializeResult:
        """Re-fetch artifacts for *session_id* (default: the last session)."""
        session_id = session_id or self.current_session_id(workspace_root)
        if not session_id:
            raise ValueError(f"No session recorded for workspace {workspace_root}")
        destination = Path(workspace_root) / self._config.artifact_dir
        result = await self.materializer.materialize(session_id, destination)
        self._record_artifacts(result)
        return result

    async def compile_rfx(
        self,
        workspace_root: str | Path,
        file_path: str | Path,
    ) -> CompileResult:
        """Compile one .rfx file in the workspace's context."""
        return await self.rfx.compile(workspace_root, file_path)

    async def verify_rfx(
        self,
        workspace_root: str | Path,
        file_path: str | Path,
        check_level: str = "standard",
    ) -> VerifyResult:
        """Verify one .rfx file in the workspace's context."""
        return await self.rfx.verify(workspace_root, file_path, check_level)

    # ── Telemetry ──

    def _on_decode_error(self, error: DecodeError) -> None:
        if self._telemetry is not None:
            self._telemetry.record_metric("decode_error", 1, {"reason": error.reason})

    def _record_artifacts(self, result: MaterializeResult) -> None:
        if self._telemetry is None:
            return
        self._telemetry.record_metric("artifacts_written", result.count)
        self._telemetry.record_metric("artifact_failures", result.failure_count)

    def _record_run(self, report: SessionReport) -> None:
        if self._telemetry is None:
            return
        session = report.session
        state = report.outcome.state.value
        self._telemetry.record_metric(
            "session_outcome", 1, {"state": state, "tier": session.tier.value},
        )
        if session.finished_at is not None:
            latency = (session.finished_at - session.dispatched_at).total_seconds()
            self._telemetry.record_metric(
                "session_latency_seconds", latency, {"state": state},
            )
        if report.artifacts is not None:
            self._record_artifacts(report.artifacts)
