"""API key storage.

The key lives in ~/.reflexible/credentials.json (mode 0600). A key
supplied through configuration (RFX_API_KEY) is used only when
nothing is stored, and stops being used once the service rejects it.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from reflexible.shared.services.durable_write import atomic_write_text

logger = logging.getLogger(__name__)

FILENAME = "credentials.json"


class CredentialStore:
    """Load, save and invalidate the service API key."""

    def __init__(self, state_dir: Path, fallback_key: str | None = None) -> None:
        self._path = Path(state_dir) / FILENAME
        self._fallback_key = fallback_key or None

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> str | None:
        """Return the stored key, else the configured fallback."""
        stored = self._load()
        return stored or self._fallback_key

    def set(self, api_key: str) -> None:
        api_key = api_key.strip()
        if not api_key:
            raise ValueError("API key must not be empty")
        atomic_write_text(self._path, json.dumps({"api_key": api_key}) + "\n")
        try:
            os.chmod(self._path, 0o600)
        except OSError:
            logger.debug("Could not restrict permissions on %s", self._path)
        logger.info("Stored API key at %s", self._path)

    def delete(self) -> None:
        """Forget the key, including the configured fallback."""
        self._fallback_key = None
        try:
            self._path.unlink()
            logger.info("Cleared stored API key at %s", self._path)
        except FileNotFoundError:
            pass

    def _load(self) -> str | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Failed to load credentials from %s", self._path)
            return None
        key = data.get("api_key") if isinstance(data, dict) else None
        return key if isinstance(key, str) and key else None
