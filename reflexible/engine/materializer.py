"""Artifact retrieval and local materialization.

Fetches the outputs of a completed session and writes them below a
destination directory:

    remote path                  local path
    output/firmware/main.c  ->   <dest>/firmware/main.c
    output/app.uf2          ->   <dest>/app.uf2   (base64-decoded)

Files whose extension is in the binary allow-list arrive base64
encoded; everything else is UTF-8 text. One bad artifact is recorded
as a failure and does not stop the others. Re-running overwrites the
same files with the same bytes.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import quote

from reflexible.shared.services.durable_write import atomic_write_bytes

from .api import ApiClient
from .errors import ProtocolError
from .models import DEFAULT_BINARY_EXTENSIONS, Artifact, MaterializeResult, is_binary_path

logger = logging.getLogger(__name__)


class ArtifactMaterializer:
    """Download a session's artifacts into a local directory."""

    def __init__(
        self,
        api: ApiClient,
        *,
        prefix: str = "output/",
        binary_extensions: frozenset[str] = DEFAULT_BINARY_EXTENSIONS,
    ) -> None:
        self._api = api
        self._prefix = prefix
        self._binary_extensions = binary_extensions

    def resolve_path(self, destination_root: Path, artifact_path: str) -> Path:
        """Map a remote artifact path to its local file.

        Raises ValueError for paths that are empty after prefix
        stripping, absolute, or that climb out of *destination_root*.
        """
        rel = artifact_path.replace("\\", "/")
        if self._prefix and rel.startswith(self._prefix):
            rel = rel[len(self._prefix):]
        pure = PurePosixPath(rel)
        if pure.is_absolute() or (pure.parts and ":" in pure.parts[0]):
            raise ValueError(f"absolute artifact path: {artifact_path!r}")
        parts = [part for part in pure.parts if part not in ("", ".")]
        if not parts:
            raise ValueError(f"empty artifact path: {artifact_path!r}")
        if ".." in parts:
            raise ValueError(f"artifact path escapes destination: {artifact_path!r}")
        return Path(destination_root).joinpath(*parts)

    async def fetch(self, session_id: str) -> tuple[list[Artifact], list[tuple[str, str]]]:
        """Return (artifacts, failures) listed for *session_id*."""
        path = f"/api/v1/sessions/{quote(session_id, safe='')}/artifacts"
        data = await self._api.request_json("GET", path)
        raw_list = data.get("artifacts")
        if raw_list is None:
            return [], []
        if not isinstance(raw_list, list):
            raise ProtocolError(path, "'artifacts' is not a list")

        artifacts: list[Artifact] = []
        failures: list[tuple[str, str]] = []
        for entry in raw_list:
            try:
                artifacts.append(self._parse_artifact(entry, session_id))
            except ValueError as exc:
                name = entry.get("path") if isinstance(entry, dict) else None
                failures.append((str(name or "<unknown>"), str(exc)))
                logger.warning("Skipping artifact %s: %s", name, exc)
        return artifacts, failures

    def _parse_artifact(self, entry: Any, session_id: str) -> Artifact:
        if not isinstance(entry, dict):
            raise ValueError("artifact entry is not an object")
        path = entry.get("path")
        if not isinstance(path, str) or not path:
            raise ValueError("artifact has no path")
        content = entry.get("content")
        if content is None:
            content = ""
        if not isinstance(content, str):
            raise ValueError("artifact content is not a string")

        encoded = str(entry.get("encoding", "")).lower() == "base64"
        if encoded or is_binary_path(path, self._binary_extensions):
            try:
                return Artifact(
                    path=path,
                    content=base64.b64decode(content, validate=True),
                    session_id=session_id,
                )
            except (binascii.Error, ValueError) as exc:
                raise ValueError(f"invalid base64 content: {exc}") from exc
        return Artifact(path=path, content=content, session_id=session_id)

    async def materialize(
        self,
        session_id: str,
        destination_root: str | Path,
    ) -> MaterializeResult:
        """Write every artifact of *session_id* under *destination_root*.

        No artifacts means no filesystem writes at all.
        """
        destination_root = Path(destination_root)
        artifacts, failures = await self.fetch(session_id)
        result = MaterializeResult(failures=list(failures))
        if not artifacts:
            if not failures:
                logger.info("No artifacts to download for session %s", session_id)
            return result

        for artifact in artifacts:
            try:
                target = self.resolve_path(destination_root, artifact.path)
                await asyncio.to_thread(atomic_write_bytes, target, artifact.as_bytes())
            except (ValueError, OSError) as exc:
                result.failures.append((artifact.path, str(exc)))
                logger.warning("Failed to write artifact %s: %s", artifact.path, exc)
                continue
            result.written.append(target)
            logger.info("Downloaded: %s -> %s", artifact.path, target)

        logger.info(
            "Session %s: %d artifact(s) written to %s, %d failed",
            session_id, result.count, destination_root, result.failure_count,
        )
        return result
