"""Upload workspace input files into an execution context."""
from __future__ import annotations

import asyncio
import fnmatch
import logging
from pathlib import Path
from urllib.parse import quote

from .api import ApiClient
from .models import ExecutionContext

logger = logging.getLogger(__name__)


class WorkspaceUploader:
    """Collects matching workspace files and posts them in one batch."""

    def __init__(
        self,
        api: ApiClient,
        globs: list[str] | None = None,
        excludes: list[str] | None = None,
    ) -> None:
        self._api = api
        self._globs = list(globs) if globs is not None else ["**/*.rfx"]
        self._excludes = list(excludes) if excludes is not None else ["**/node_modules/**"]

    def _excluded(self, rel: str) -> bool:
        # Leading "/" lets "**/x/**" also match a top-level "x/".
        return any(
            fnmatch.fnmatch(rel, pattern) or fnmatch.fnmatch(f"/{rel}", pattern)
            for pattern in self._excludes
        )

    def collect(self, workspace_root: str | Path) -> list[Path]:
        """Return matching files, relative to *workspace_root*, sorted."""
        root = Path(workspace_root)
        found: set[Path] = set()
        for pattern in self._globs:
            for path in root.glob(pattern):
                if not path.is_file():
                    continue
                rel = path.relative_to(root)
                if self._excluded(rel.as_posix()):
                    continue
                found.add(rel)
        return sorted(found)

    def _gather(self, root: Path) -> list[dict[str, str]]:
        """Collect and read the upload batch. Blocking; run off the event loop."""
        return [
            {
                "path": rel.as_posix(),
                "content": (root / rel).read_text(encoding="utf-8", errors="replace"),
            }
            for rel in self.collect(root)
        ]

    async def upload(self, context: ExecutionContext, workspace_root: str | Path) -> int:
        """Upload the workspace's input files. Returns the server's count."""
        root = Path(workspace_root)
        files = await asyncio.to_thread(self._gather, root)
        if not files:
            logger.debug("No workspace files to upload from %s", root)
            return 0

        path = f"/api/v1/projects/{quote(context.context_id, safe='')}/files/upload-batch"
        data = await self._api.request_json("POST", path, payload={"files": files})
        try:
            uploaded = int(data.get("filesUploaded", 0) or 0)
        except (TypeError, ValueError):
            uploaded = 0
        logger.info(
            "Uploaded %d of %d workspace file(s) to project %s",
            uploaded, len(files), context.context_id,
        )
        return uploaded
