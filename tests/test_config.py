"""Environment and YAML configuration."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from reflexible.engine.config import DEFAULT_BASE_URL, ClientConfig
from reflexible.engine.models import DEFAULT_BINARY_EXTENSIONS, DisposePolicy
from reflexible.engine.yaml_config import find_workspace_config, load_yaml_config


def _clean_env() -> dict[str, str]:
    return {k: v for k, v in os.environ.items() if not k.startswith("RFX_")}


def test_defaults_without_env():
    with patch.dict(os.environ, _clean_env(), clear=True):
        config = ClientConfig.from_env()
    assert config.base_url == DEFAULT_BASE_URL
    assert config.api_key is None
    assert config.idle_timeout == 300.0
    assert config.dispose_policy is DisposePolicy.ON_COMPLETE
    assert config.binary_extensions == DEFAULT_BINARY_EXTENSIONS
    assert config.telemetry_db_path is None


def test_env_overrides(tmp_path):
    env = _clean_env()
    env.update({
        "RFX_BASE_URL": "http://localhost:9000/",
        "RFX_API_KEY": "secret",
        "RFX_IDLE_TIMEOUT": "0",
        "RFX_REQUEST_TIMEOUT": "12.5",
        "RFX_STATE_DIR": str(tmp_path / "state"),
        "RFX_ARTIFACT_DIR": "generated",
        "RFX_DISPOSE_POLICY": "NEVER",
        "RFX_TELEMETRY_DB_PATH": str(tmp_path / "t.sqlite3"),
    })
    with patch.dict(os.environ, env, clear=True):
        config = ClientConfig.from_env()

    assert config.base_url == "http://localhost:9000"
    assert config.api_key == "secret"
    assert config.idle_timeout is None
    assert config.request_timeout_seconds == 12.5
    assert config.state_dir == tmp_path / "state"
    assert config.artifact_dir == "generated"
    assert config.dispose_policy is DisposePolicy.NEVER
    assert config.telemetry_db_path == tmp_path / "t.sqlite3"
    assert "secret" not in repr(config)


def test_invalid_dispose_policy_is_rejected():
    env = _clean_env()
    env["RFX_DISPOSE_POLICY"] = "sometimes"
    with patch.dict(os.environ, env, clear=True):
        with pytest.raises(ValueError):
            ClientConfig.from_env()


def test_yaml_overrides_base(tmp_path):
    path = tmp_path / "reflexible.yaml"
    path.write_text(yaml.safe_dump({
        "client": {
            "base_url": "https://rfx.example.com/",
            "idle_timeout_seconds": 45,
            "dispose_policy": "always",
        },
        "artifacts": {"dir": "build/gen", "prefix": "", "binary_extensions": ["UF2", ".img"]},
        "upload": {"globs": "**/*.rfx", "excludes": ["**/vendor/**"]},
        "telemetry": {"db_path": str(tmp_path / "metrics.sqlite3")},
    }), encoding="utf-8")

    config = load_yaml_config(path, base=ClientConfig(api_key="keep-me"))

    assert config.base_url == "https://rfx.example.com"
    assert config.idle_timeout_seconds == 45.0
    assert config.dispose_policy is DisposePolicy.ALWAYS
    assert config.artifact_dir == "build/gen"
    assert config.artifact_prefix == ""
    assert config.binary_extensions == frozenset({".uf2", ".img"})
    assert config.upload_globs == ["**/*.rfx"]
    assert config.upload_excludes == ["**/vendor/**"]
    assert config.telemetry_db_path == tmp_path / "metrics.sqlite3"
    assert config.api_key == "keep-me"


def test_yaml_absent_keys_keep_base(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    base = ClientConfig(project_name="Bench")
    assert load_yaml_config(path, base=base) == base


def test_yaml_bad_section_type(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("upload: [1, 2]\n", encoding="utf-8")
    with pytest.raises(ValueError, match="upload"):
        load_yaml_config(path, base=ClientConfig())


def test_yaml_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_yaml_config(tmp_path / "missing.yaml", base=ClientConfig())


def test_find_workspace_config_prefers_dot_directory(tmp_path):
    assert find_workspace_config(tmp_path) is None
    (tmp_path / "reflexible.yaml").write_text("{}", encoding="utf-8")
    assert find_workspace_config(tmp_path) == tmp_path / "reflexible.yaml"
    (tmp_path / ".reflexible").mkdir()
    (tmp_path / ".reflexible" / "config.yaml").write_text("{}", encoding="utf-8")
    assert find_workspace_config(tmp_path) == Path(tmp_path) / ".reflexible" / "config.yaml"
