"""Compile and verify single .rfx files against the workspace's context.

Both operations reuse (or lazily create) the workspace's execution
context, send the file's text, and return the service's verdict:

    POST /api/v1/projects/{id}/rfx/compile  {filePath, content}
        -> {success, result: {output, warnings}, errors}
    POST /api/v1/projects/{id}/rfx/verify   {filePath, content, checkLevel}
        -> {success, result: {status, issues: [{severity, line, message}], warnings}}

A compile or verify that ran but found problems is a result, not an
exception. Transport, auth and remote failures propagate unchanged.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote

from .api import ApiClient
from .context_manager import ContextManager
from .errors import ProtocolError

logger = logging.getLogger(__name__)

RFX_SUFFIX = ".rfx"
DEFAULT_CHECK_LEVEL = "standard"
VERIFY_PASSED = "passed"


@dataclass
class CompileResult:
    """Outcome of one remote compile."""
    file_path: str
    success: bool
    output: str = ""
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class VerifyIssue:
    """A single finding reported by verify."""
    severity: str
    message: str
    line: int | None = None


@dataclass
class VerifyResult:
    """Outcome of one remote verify."""
    file_path: str
    success: bool
    status: str = "unknown"
    issues: list[VerifyIssue] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        """The call succeeded and the service reported a clean pass."""
        return self.success and self.status == VERIFY_PASSED


def _strings(raw: object) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [str(item) for item in raw if item is not None]


def _parse_issue(raw: object) -> VerifyIssue | None:
    if not isinstance(raw, dict):
        return None
    line = raw.get("line")
    if isinstance(line, bool) or not isinstance(line, int):
        try:
            line = int(line) if line is not None else None
        except (TypeError, ValueError):
            line = None
    return VerifyIssue(
        severity=str(raw.get("severity") or "info"),
        message=str(raw.get("message") or ""),
        line=line,
    )


class RfxTools:
    """One-shot .rfx compile and verify calls."""

    def __init__(self, api: ApiClient, contexts: ContextManager) -> None:
        self._api = api
        self._contexts = contexts

    @staticmethod
    def _read_source(workspace_root: Path, file_path: str | Path) -> tuple[str, str]:
        """Return (path as sent to the service, file text)."""
        path = Path(file_path)
        if not path.is_absolute():
            path = workspace_root / path
        if path.suffix.lower() != RFX_SUFFIX:
            raise ValueError(f"Not a {RFX_SUFFIX} file: {file_path}")
        if not path.is_file():
            raise ValueError(f"File not found: {file_path}")
        try:
            sent_as = path.resolve().relative_to(workspace_root.resolve()).as_posix()
        except ValueError:
            # Outside the workspace: send it as given.
            sent_as = path.as_posix()
        return sent_as, path.read_text(encoding="utf-8", errors="replace")

    async def _post(
        self,
        workspace_root: str | Path,
        file_path: str | Path,
        action: str,
        extra: dict[str, Any] | None = None,
    ) -> tuple[str, dict[str, Any], str]:
        root = Path(workspace_root)
        sent_as, content = await asyncio.to_thread(self._read_source, root, file_path)
        context = await self._contexts.acquire(root)
        endpoint = f"/api/v1/projects/{quote(context.context_id, safe='')}/rfx/{action}"
        payload: dict[str, Any] = {"filePath": sent_as, "content": content}
        if extra:
            payload.update(extra)
        logger.info("%s %s in project %s", action.capitalize(), sent_as, context.context_id)
        data = await self._api.request_json("POST", endpoint, payload=payload)
        return sent_as, data, endpoint

    async def compile(
        self,
        workspace_root: str | Path,
        file_path: str | Path,
    ) -> CompileResult:
        """Compile one .rfx file.

        Raises:
            ValueError: not an existing .rfx file (no remote call made).
            AuthExpiredError, RemoteError, TransportError: see errors.py.
        """
        sent_as, data, endpoint = await self._post(workspace_root, file_path, "compile")
        result = data.get("result") or {}
        if not isinstance(result, dict):
            raise ProtocolError(endpoint, "result is not an object")
        compiled = CompileResult(
            file_path=sent_as,
            success=bool(data.get("success")),
            output=str(result.get("output") or ""),
            warnings=_strings(result.get("warnings")),
            errors=_strings(data.get("errors")),
        )
        logger.info(
            "Compiled %s: success=%s warnings=%d errors=%d",
            sent_as, compiled.success, len(compiled.warnings), len(compiled.errors),
        )
        return compiled

    async def verify(
        self,
        workspace_root: str | Path,
        file_path: str | Path,
        check_level: str = DEFAULT_CHECK_LEVEL,
    ) -> VerifyResult:
        """Verify one .rfx file at *check_level*."""
        sent_as, data, endpoint = await self._post(
            workspace_root, file_path, "verify", {"checkLevel": check_level},
        )
        result = data.get("result") or {}
        if not isinstance(result, dict):
            raise ProtocolError(endpoint, "result is not an object")
        issues = [
            issue
            for issue in (_parse_issue(raw) for raw in result.get("issues") or [])
            if issue is not None
        ]
        verified = VerifyResult(
            file_path=sent_as,
            success=bool(data.get("success")),
            status=str(result.get("status") or "unknown"),
            issues=issues,
            warnings=_strings(result.get("warnings")),
        )
        logger.info(
            "Verified %s: status=%s issues=%d", sent_as, verified.status, len(issues),
        )
        return verified
