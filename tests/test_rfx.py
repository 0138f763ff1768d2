""".rfx compile and verify against the workspace's context."""

from __future__ import annotations

import pytest

from reflexible.engine.context_manager import ContextManager
from reflexible.engine.errors import RemoteError
from reflexible.engine.registry import WorkspaceRegistry
from reflexible.engine.rfx import RfxTools, VerifyIssue

from fake_service import FakeService, make_api, make_config, serve


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "ws"
    (root / "src").mkdir(parents=True)
    (root / "src" / "blink.rfx").write_text("led blink 500ms", encoding="utf-8")
    (root / "notes.txt").write_text("not rfx", encoding="utf-8")
    return root


async def _tools_call(service, tmp_path, call):
    async with serve(service) as base_url:
        config = make_config(base_url, tmp_path / "state")
        async with make_api(config) as api:
            tools = RfxTools(api, ContextManager(api, WorkspaceRegistry(config.state_dir)))
            return await call(tools)


@pytest.mark.asyncio
async def test_compile_sends_relative_path_and_content(tmp_path, workspace):
    service = FakeService()
    service.compile_response = {
        "success": True,
        "result": {"output": "ok: 1 module", "warnings": ["unused pin 3"]},
        "errors": [],
    }

    result = await _tools_call(
        service, tmp_path, lambda tools: tools.compile(workspace, "src/blink.rfx"),
    )

    assert result.success is True
    assert result.output == "ok: 1 module"
    assert result.warnings == ["unused pin 3"]
    assert result.errors == []
    assert result.file_path == "src/blink.rfx"
    assert service.rfx_requests == [
        ("proj-1", "compile", {"filePath": "src/blink.rfx", "content": "led blink 500ms"}),
    ]


@pytest.mark.asyncio
async def test_compile_failure_is_a_result(tmp_path, workspace):
    service = FakeService()
    service.compile_response = {"success": False, "errors": ["line 1: unknown verb"]}

    result = await _tools_call(
        service, tmp_path,
        lambda tools: tools.compile(workspace, workspace / "src" / "blink.rfx"),
    )

    assert result.success is False
    assert result.output == ""
    assert result.errors == ["line 1: unknown verb"]


@pytest.mark.asyncio
async def test_verify_parses_issues_and_reuses_context(tmp_path, workspace):
    service = FakeService()
    service.verify_response = {
        "success": True,
        "result": {
            "status": "failed",
            "issues": [
                {"severity": "error", "line": 4, "message": "timer overflow"},
                {"severity": "warning", "message": "no watchdog"},
                "garbage",
            ],
            "warnings": [],
        },
    }

    async def both(tools):
        await tools.compile(workspace, "src/blink.rfx")
        return await tools.verify(workspace, "src/blink.rfx")

    result = await _tools_call(service, tmp_path, both)

    assert result.status == "failed"
    assert result.passed is False
    assert result.issues == [
        VerifyIssue(severity="error", message="timer overflow", line=4),
        VerifyIssue(severity="warning", message="no watchdog", line=None),
    ]
    assert service.projects_created == 1
    project_id, action, body = service.rfx_requests[-1]
    assert (project_id, action) == ("proj-1", "verify")
    assert body["checkLevel"] == "standard"


@pytest.mark.asyncio
async def test_verify_passes_with_default_response(tmp_path, workspace):
    service = FakeService()
    result = await _tools_call(
        service, tmp_path,
        lambda tools: tools.verify(workspace, "src/blink.rfx", check_level="strict"),
    )
    assert result.passed is True
    assert service.rfx_requests[0][2]["checkLevel"] == "strict"


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["notes.txt", "src/missing.rfx"])
async def test_non_rfx_or_missing_file_makes_no_request(tmp_path, workspace, name):
    service = FakeService()
    with pytest.raises(ValueError):
        await _tools_call(service, tmp_path, lambda tools: tools.compile(workspace, name))
    assert service.projects_created == 0
    assert service.rfx_requests == []


@pytest.mark.asyncio
async def test_remote_failure_propagates(tmp_path, workspace):
    service = FakeService()
    async with serve(service) as base_url:
        config = make_config(base_url, tmp_path / "state")
        async with make_api(config) as api:
            contexts = ContextManager(api, WorkspaceRegistry(config.state_dir))
            await contexts.acquire(workspace)
            tools = RfxTools(api, contexts)
            service.auth_failure = (500, "compiler crashed")
            with pytest.raises(RemoteError) as excinfo:
                await tools.compile(workspace, "src/blink.rfx")
    assert excinfo.value.status == 500
