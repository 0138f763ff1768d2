"""HTTP access to the Reflexible service.

Every call carries the bearer credential and is classified on the
way back:

    2xx                                   -> parsed JSON object
    401/403 with an auth-failure body     -> AuthExpiredError (key cleared)
    any other non-2xx                     -> RemoteError(status, body)
    connection failure / request timeout  -> TransportError

No call is retried here; retry policy belongs to the caller.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import aiohttp

from reflexible.shared.services.credentials import CredentialStore

from .config import ClientConfig
from .errors import AuthExpiredError, ProtocolError, RemoteError, TransportError

logger = logging.getLogger(__name__)

AUTH_FAILURE_PATTERN = re.compile(
    r"expired|invalid|unauthorized|access denied", re.IGNORECASE,
)
AUTH_STATUSES = frozenset({401, 403})


class ApiClient:
    """Thin aiohttp wrapper: auth header, URL building, error classification."""

    def __init__(
        self,
        config: ClientConfig,
        credentials: CredentialStore,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._credentials = credentials
        self._session = session
        self._owns_session = session is None

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _url(self, path: str) -> str:
        return f"{self._config.base_url.rstrip('/')}{path}"

    def _headers(self) -> dict[str, str]:
        api_key = self._credentials.get()
        if not api_key:
            raise AuthExpiredError("no API key configured")
        return {
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Perform one request and return the decoded JSON object body.

        An empty 2xx body decodes to ``{}``.
        """
        headers = self._headers()
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_seconds)
        logger.debug("%s %s", method, path)
        try:
            async with self._http().request(
                method,
                self._url(path),
                json=payload,
                params=params,
                headers=headers,
                timeout=timeout,
            ) as resp:
                await self._raise_for_status(resp, path)
                text = await resp.text()
        except aiohttp.ClientError as exc:
            raise TransportError(path, f"{type(exc).__name__}: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise TransportError(
                path, f"no response within {self._config.request_timeout_seconds}s",
            ) from exc

        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProtocolError(path, f"response is not JSON: {exc.msg}") from exc
        if not isinstance(data, dict):
            raise ProtocolError(path, f"expected a JSON object, got {type(data).__name__}")
        return data

    @asynccontextmanager
    async def stream(
        self,
        path: str,
        params: dict[str, str] | None = None,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open a long-lived streaming GET.

        Only connecting is bounded by the request timeout; read pacing is
        the caller's concern.
        """
        headers = self._headers()
        headers["Accept"] = "text/event-stream"
        timeout = aiohttp.ClientTimeout(
            total=None, sock_connect=self._config.request_timeout_seconds,
        )
        try:
            resp = await self._http().get(
                self._url(path), params=params, headers=headers, timeout=timeout,
            )
        except aiohttp.ClientError as exc:
            raise TransportError(path, f"{type(exc).__name__}: {exc}") from exc
        except asyncio.TimeoutError as exc:
            raise TransportError(path, "timed out opening stream") from exc

        try:
            await self._raise_for_status(resp, path)
            logger.info("Stream opened %s status=%d", path, resp.status)
            yield resp
        finally:
            resp.close()

    async def _raise_for_status(self, resp: aiohttp.ClientResponse, path: str) -> None:
        if 200 <= resp.status < 300:
            return
        try:
            body = await resp.text()
        except aiohttp.ClientError:
            body = ""
        logger.error(
            "API error [%d]: endpoint=%s response=%s", resp.status, path, body[:500],
        )
        if resp.status in AUTH_STATUSES and AUTH_FAILURE_PATTERN.search(body):
            self._credentials.delete()
            raise AuthExpiredError(body[:200] or "credential rejected", resp.status)
        raise RemoteError(resp.status, body, path)
