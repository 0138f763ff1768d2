"""Workspace-scoped persistent state.

Maps a workspace root to a small JSON key/value file:
    ~/.reflexible/workspaces/{WORKSPACE_ID}/state.json

Nothing is cached in memory: every read goes to disk, since the
host process may restart between sessions.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from reflexible.shared.services.durable_write import atomic_write_text

logger = logging.getLogger(__name__)

FILENAME = "state.json"

# Keys
EPHEMERAL_PROJECT_ID = "ephemeral_project_id"
EPHEMERAL_PROJECT_CREATED_AT = "ephemeral_project_created_at"
UPLOADED_FILE_COUNT = "uploaded_file_count"
CURRENT_SESSION_ID = "current_session_id"


def get_workspace_id(workspace_root: Path) -> str:
    """Path-based identity suitable for use as a directory name.

    Example: /home/user/myproject -> home-user-myproject
    """
    resolved = Path(workspace_root).resolve()
    return "-".join(resolved.parts[1:]) or "root"


class WorkspaceState:
    """Load and save the key/value state of one workspace."""

    def __init__(self, state_dir: Path, workspace_root: Path) -> None:
        self.workspace_root = Path(workspace_root)
        self.workspace_id = get_workspace_id(self.workspace_root)
        self._path = Path(state_dir) / "workspaces" / self.workspace_id / FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def snapshot(self) -> dict[str, Any]:
        """Return the full persisted mapping (empty if missing/corrupt)."""
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Failed to load workspace state %s; treating as empty", self._path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Workspace state %s is not a mapping; treating as empty", self._path)
            return {}
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self.snapshot().get(key, default)

    def update(self, key: str, value: Any) -> None:
        """Set one key. A value of None removes the key."""
        self.update_many({key: value})

    def update_many(self, values: dict[str, Any]) -> None:
        """Apply several keys in one read-modify-write."""
        data = self.snapshot()
        for key, value in values.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        atomic_write_text(self._path, json.dumps(data, indent=2, sort_keys=True) + "\n")
        logger.debug("Workspace %s state updated: %s", self.workspace_id, ", ".join(values))

    def clear(self, *keys: str) -> None:
        self.update_many({key: None for key in keys})
