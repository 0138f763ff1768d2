"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via RFX_* env vars,
or with a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from .models import DEFAULT_BINARY_EXTENSIONS, DisposePolicy

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://reflexible-web-dev.fly.dev"


def _default_state_dir() -> Path:
    return Path.home() / ".reflexible"


@dataclass
class ClientConfig:
    """Session orchestrator configuration."""

    # Remote service
    base_url: str = DEFAULT_BASE_URL
    # Used only when no credential has been stored.
    api_key: str | None = field(default=None, repr=False)
    # Per-request budget for the single-shot calls (dispatch, cleanup, ...).
    request_timeout_seconds: float = 60.0
    # Max silence on the event stream before the session is failed.
    # Set to 0 (or a negative value) to disable.
    idle_timeout_seconds: float = 300.0
    # Name sent when creating an ephemeral project.
    project_name: str = "Reflexible Session"

    # Local state (workspace handles, credentials, logs)
    state_dir: Path = field(default_factory=_default_state_dir)

    # Artifacts are written to <workspace>/<artifact_dir>, with
    # artifact_prefix stripped from each remote path.
    artifact_dir: str = "output"
    artifact_prefix: str = "output/"
    binary_extensions: frozenset[str] = DEFAULT_BINARY_EXTENSIONS

    # Workspace files uploaded into the project before dispatch
    upload_globs: list[str] = field(default_factory=lambda: ["**/*.rfx"])
    upload_excludes: list[str] = field(
        default_factory=lambda: ["**/node_modules/**"],
    )

    dispose_policy: DisposePolicy = DisposePolicy.ON_COMPLETE

    # Logging
    log_level: str = "INFO"

    # Optional sqlite file for runtime metrics
    telemetry_db_path: Path | None = None

    @property
    def idle_timeout(self) -> float | None:
        """Idle timeout for asyncio.wait_for, or None when disabled."""
        if self.idle_timeout_seconds <= 0:
            return None
        return self.idle_timeout_seconds

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Load configuration from RFX_* environment variables."""
        rfx_vars = {
            k: ("***" if k == "RFX_API_KEY" else v)
            for k, v in os.environ.items() if k.startswith("RFX_")
        }
        if rfx_vars:
            logger.info(
                "ClientConfig.from_env: RFX_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(rfx_vars.items())),
            )
        else:
            logger.debug("ClientConfig.from_env: no RFX_* env vars set, using defaults")

        state_dir = os.getenv("RFX_STATE_DIR")
        telemetry_db_path = os.getenv("RFX_TELEMETRY_DB_PATH")
        config = cls(
            base_url=os.getenv("RFX_BASE_URL", cls.base_url).rstrip("/"),
            api_key=os.getenv("RFX_API_KEY") or None,
            request_timeout_seconds=float(os.getenv(
                "RFX_REQUEST_TIMEOUT", str(cls.request_timeout_seconds)
            )),
            idle_timeout_seconds=float(os.getenv(
                "RFX_IDLE_TIMEOUT", str(cls.idle_timeout_seconds)
            )),
            project_name=os.getenv("RFX_PROJECT_NAME", cls.project_name),
            state_dir=Path(state_dir).expanduser() if state_dir else _default_state_dir(),
            artifact_dir=os.getenv("RFX_ARTIFACT_DIR", cls.artifact_dir),
            dispose_policy=DisposePolicy(os.getenv(
                "RFX_DISPOSE_POLICY", cls.dispose_policy.value
            ).strip().lower()),
            log_level=os.getenv("RFX_LOG_LEVEL", cls.log_level),
            telemetry_db_path=(
                Path(telemetry_db_path).expanduser() if telemetry_db_path else None
            ),
        )
        logger.info(
            "ClientConfig.from_env: base_url=%s idle_timeout=%s dispose=%s log_level=%s",
            config.base_url, config.idle_timeout_seconds,
            config.dispose_policy.value, config.log_level,
        )
        return config
