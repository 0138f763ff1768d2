"""YAML configuration loader.

Loads a single YAML file layered over the env-derived ClientConfig.
When no YAML is provided, env vars work exactly as before.

Example YAML:
    client:
      base_url: https://reflexible.example.com
      idle_timeout_seconds: 120
      dispose_policy: always

    artifacts:
      dir: build/generated
      prefix: output/
      binary_extensions: [.uf2, .bin, .hex, .elf]

    upload:
      globs: ["**/*.rfx", "config/*.toml"]
      excludes: ["**/node_modules/**"]

    telemetry:
      db_path: ~/.reflexible/telemetry.sqlite3
"""
from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from .config import ClientConfig
from .models import DisposePolicy

logger = logging.getLogger(__name__)

# Looked up relative to the workspace root, first match wins.
WORKSPACE_CONFIG_NAMES = (
    Path(".reflexible") / "config.yaml",
    Path("reflexible.yaml"),
)


def find_workspace_config(workspace_root: str | Path) -> Path | None:
    """Return the workspace's YAML config path, if one exists."""
    root = Path(workspace_root)
    for name in WORKSPACE_CONFIG_NAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"'{name}' section must be a mapping, got {type(value).__name__}")
    return value


def _str_list(value: Any, name: str) -> list[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ValueError(f"'{name}' must be a list of strings")
    return [str(v) for v in value]


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


def load_yaml_config(
    path: str | Path,
    base: ClientConfig | None = None,
) -> ClientConfig:
    """Load and parse a YAML config file.

    Values present in the file override *base* (by default
    ClientConfig.from_env()); absent keys keep the base value.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists()
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute()
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    config = base if base is not None else ClientConfig.from_env()
    overrides: dict[str, Any] = {}

    # ── Client ────────────────────────────────────────────────
    client_raw = _section(raw, "client")
    if "base_url" in client_raw:
        overrides["base_url"] = str(client_raw["base_url"]).rstrip("/")
    for key in ("request_timeout_seconds", "idle_timeout_seconds"):
        if key in client_raw:
            overrides[key] = float(client_raw[key])
    if "project_name" in client_raw:
        overrides["project_name"] = str(client_raw["project_name"])
    if "state_dir" in client_raw:
        overrides["state_dir"] = Path(str(client_raw["state_dir"])).expanduser()
    if "dispose_policy" in client_raw:
        overrides["dispose_policy"] = DisposePolicy(
            str(client_raw["dispose_policy"]).strip().lower()
        )
    if "log_level" in client_raw:
        overrides["log_level"] = str(client_raw["log_level"]).upper()

    # ── Artifacts ─────────────────────────────────────────────
    artifacts_raw = _section(raw, "artifacts")
    if "dir" in artifacts_raw:
        overrides["artifact_dir"] = str(artifacts_raw["dir"])
    if "prefix" in artifacts_raw:
        overrides["artifact_prefix"] = str(artifacts_raw["prefix"] or "")
    if "binary_extensions" in artifacts_raw:
        overrides["binary_extensions"] = frozenset(
            _normalize_extension(ext)
            for ext in _str_list(artifacts_raw["binary_extensions"], "binary_extensions")
        )

    # ── Upload ────────────────────────────────────────────────
    upload_raw = _section(raw, "upload")
    if "globs" in upload_raw:
        overrides["upload_globs"] = _str_list(upload_raw["globs"], "upload.globs")
    if "excludes" in upload_raw:
        overrides["upload_excludes"] = _str_list(upload_raw["excludes"], "upload.excludes")

    # ── Telemetry ─────────────────────────────────────────────
    telemetry_raw = _section(raw, "telemetry")
    if telemetry_raw.get("db_path"):
        overrides["telemetry_db_path"] = Path(str(telemetry_raw["db_path"])).expanduser()

    if overrides:
        logger.debug("load_yaml_config: overriding %s", ", ".join(sorted(overrides)))
    return replace(config, **overrides)
