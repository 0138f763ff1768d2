"""Execution context ("ephemeral project") management.

One context per workspace, created lazily on first use and reused
across sessions until disposed. The handle is persisted in the
workspace state so a restarted process picks it up again.
"""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from urllib.parse import quote

from reflexible.shared.services.workspace_state import (
    CURRENT_SESSION_ID,
    EPHEMERAL_PROJECT_CREATED_AT,
    EPHEMERAL_PROJECT_ID,
    UPLOADED_FILE_COUNT,
)

from .api import ApiClient
from .errors import ProtocolError, ReflexibleError
from .models import ExecutionContext
from .registry import WorkspaceRegistry

logger = logging.getLogger(__name__)

CREATE_PATH = "/api/v1/projects/ephemeral"


def _parse_created_at(raw: object) -> datetime | None:
    if not isinstance(raw, str):
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


class ContextManager:
    """Acquire, track and dispose execution contexts per workspace."""

    def __init__(
        self,
        api: ApiClient,
        registry: WorkspaceRegistry,
        project_name: str = "Reflexible Session",
    ) -> None:
        self._api = api
        self._registry = registry
        self._project_name = project_name

    def current(self, workspace_root: str | Path) -> ExecutionContext | None:
        """Return the persisted context for a workspace, if any."""
        data = self._registry.get(workspace_root).state.snapshot()
        context_id = data.get(EPHEMERAL_PROJECT_ID)
        if not context_id:
            return None
        context = ExecutionContext(
            context_id=str(context_id),
            uploaded_file_count=int(data.get(UPLOADED_FILE_COUNT, 0) or 0),
        )
        created_at = _parse_created_at(data.get(EPHEMERAL_PROJECT_CREATED_AT))
        if created_at is not None:
            context.created_at = created_at
        return context

    async def acquire(self, workspace_root: str | Path) -> ExecutionContext:
        """Return the workspace's context, creating it remotely if needed.

        Callers racing on the same workspace are serialized, so at most
        one creation request is ever in flight per workspace.
        """
        entry = self._registry.get(workspace_root)
        async with entry.context_lock:
            existing = self.current(workspace_root)
            if existing is not None:
                logger.debug(
                    "Reusing project %s for workspace %s",
                    existing.context_id, entry.workspace_id,
                )
                return existing

            data = await self._api.request_json(
                "POST", CREATE_PATH, payload={"name": self._project_name},
            )
            project = data.get("project")
            context_id = project.get("id") if isinstance(project, dict) else None
            if isinstance(context_id, int) and not isinstance(context_id, bool):
                context_id = str(context_id)
            if not isinstance(context_id, str) or not context_id:
                raise ProtocolError(CREATE_PATH, "response has no project.id")

            context = ExecutionContext(context_id=context_id)
            entry.state.update_many({
                EPHEMERAL_PROJECT_ID: context.context_id,
                EPHEMERAL_PROJECT_CREATED_AT: context.created_at.isoformat(),
                UPLOADED_FILE_COUNT: 0,
            })
            logger.info(
                "Created project %s for workspace %s", context_id, entry.workspace_id,
            )
            return context

    def record_upload(
        self,
        workspace_root: str | Path,
        context: ExecutionContext,
        count: int,
    ) -> None:
        """Add *count* to the context's uploaded-file counter and persist it."""
        context.uploaded_file_count += count
        state = self._registry.get(workspace_root).state
        if state.get(EPHEMERAL_PROJECT_ID) == context.context_id:
            state.update(UPLOADED_FILE_COUNT, context.uploaded_file_count)

    async def dispose(self, workspace_root: str | Path, context_id: str) -> bool:
        """Best-effort remote teardown.

        Returns True and clears the persisted handle on success. On
        failure the handle is kept so the still-live context is reused.
        """
        entry = self._registry.get(workspace_root)
        path = f"/api/v1/projects/{quote(context_id, safe='')}/cleanup"
        logger.info("Cleaning up project %s", context_id)
        try:
            await self._api.request_json("DELETE", path)
        except ReflexibleError as exc:
            logger.warning("Failed to clean up project %s: %s", context_id, exc)
            return False

        async with entry.context_lock:
            if entry.state.get(EPHEMERAL_PROJECT_ID) == context_id:
                entry.state.clear(
                    EPHEMERAL_PROJECT_ID,
                    EPHEMERAL_PROJECT_CREATED_AT,
                    UPLOADED_FILE_COUNT,
                )
        logger.info("Project %s cleaned up", context_id)
        return True

    async def forget(self, workspace_root: str | Path) -> None:
        """Drop the persisted context and session handles without a remote call."""
        entry = self._registry.get(workspace_root)
        async with entry.context_lock:
            entry.state.clear(
                EPHEMERAL_PROJECT_ID,
                EPHEMERAL_PROJECT_CREATED_AT,
                UPLOADED_FILE_COUNT,
                CURRENT_SESSION_ID,
            )
        logger.info("Cleared session context for workspace %s", entry.workspace_id)
