"""Per-workspace runtime registry.

Owned by the SessionOrchestrator and handed to the components that
need workspace lookup. Holds the in-process coordination state
(locks, the active session) next to the persisted WorkspaceState.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from reflexible.shared.services.workspace_state import WorkspaceState, get_workspace_id


@dataclass
class WorkspaceEntry:
    """Runtime metadata for one workspace."""

    workspace_id: str
    root: Path
    state: WorkspaceState
    # Held across read-create-persist of the execution context handle.
    context_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    busy: bool = False
    active_session_id: str | None = None


class WorkspaceRegistry:
    """Lazily creates one WorkspaceEntry per workspace root."""

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = Path(state_dir)
        self._entries: dict[str, WorkspaceEntry] = {}

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def get(self, workspace_root: str | Path) -> WorkspaceEntry:
        root = Path(workspace_root)
        workspace_id = get_workspace_id(root)
        entry = self._entries.get(workspace_id)
        if entry is None:
            entry = WorkspaceEntry(
                workspace_id=workspace_id,
                root=root.resolve(),
                state=WorkspaceState(self._state_dir, root),
            )
            self._entries[workspace_id] = entry
        return entry

    def list_workspaces(self) -> list[str]:
        return sorted(self._entries)

    def __contains__(self, workspace_root: object) -> bool:
        if not isinstance(workspace_root, (str, Path)):
            return False
        return get_workspace_id(Path(workspace_root)) in self._entries

    def __len__(self) -> int:
        return len(self._entries)
