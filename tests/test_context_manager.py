"""Execution context acquisition, reuse and disposal."""

from __future__ import annotations

import asyncio

import pytest

from reflexible.engine.context_manager import ContextManager
from reflexible.engine.registry import WorkspaceRegistry
from reflexible.shared.services.workspace_state import (
    CURRENT_SESSION_ID,
    EPHEMERAL_PROJECT_ID,
    UPLOADED_FILE_COUNT,
)

from fake_service import FakeService, make_api, make_config, serve


@pytest.mark.asyncio
async def test_concurrent_acquire_creates_exactly_one_context(tmp_path):
    service = FakeService()
    service.create_delay = 0.05
    workspace = tmp_path / "ws"
    workspace.mkdir()
    async with serve(service) as base_url:
        config = make_config(base_url, tmp_path / "state")
        async with make_api(config) as api:
            manager = ContextManager(api, WorkspaceRegistry(config.state_dir))
            contexts = await asyncio.gather(
                manager.acquire(workspace), manager.acquire(workspace),
            )

    assert service.projects_created == 1
    assert contexts[0].context_id == contexts[1].context_id == "proj-1"


@pytest.mark.asyncio
async def test_context_is_reused_across_registries(tmp_path):
    service = FakeService()
    workspace = tmp_path / "ws"
    workspace.mkdir()
    async with serve(service) as base_url:
        config = make_config(base_url, tmp_path / "state")
        async with make_api(config) as api:
            first = await ContextManager(api, WorkspaceRegistry(config.state_dir)).acquire(workspace)
            # A fresh registry reads the persisted handle.
            second = await ContextManager(api, WorkspaceRegistry(config.state_dir)).acquire(workspace)

    assert service.projects_created == 1
    assert first.context_id == second.context_id


@pytest.mark.asyncio
async def test_distinct_workspaces_get_distinct_contexts(tmp_path):
    service = FakeService()
    (tmp_path / "a").mkdir()
    (tmp_path / "b").mkdir()
    async with serve(service) as base_url:
        config = make_config(base_url, tmp_path / "state")
        async with make_api(config) as api:
            manager = ContextManager(api, WorkspaceRegistry(config.state_dir))
            a = await manager.acquire(tmp_path / "a")
            b = await manager.acquire(tmp_path / "b")

    assert a.context_id != b.context_id
    assert service.projects_created == 2


@pytest.mark.asyncio
async def test_dispose_success_clears_handle(tmp_path):
    service = FakeService()
    workspace = tmp_path / "ws"
    workspace.mkdir()
    async with serve(service) as base_url:
        config = make_config(base_url, tmp_path / "state")
        async with make_api(config) as api:
            registry = WorkspaceRegistry(config.state_dir)
            manager = ContextManager(api, registry)
            context = await manager.acquire(workspace)
            manager.record_upload(workspace, context, 3)
            assert registry.get(workspace).state.get(UPLOADED_FILE_COUNT) == 3

            assert await manager.dispose(workspace, context.context_id) is True
            assert manager.current(workspace) is None
            replacement = await manager.acquire(workspace)

    assert service.cleanups == ["proj-1"]
    assert replacement.context_id == "proj-2"


@pytest.mark.asyncio
async def test_dispose_failure_keeps_handle_and_does_not_raise(tmp_path):
    service = FakeService()
    service.cleanup_status = 500
    workspace = tmp_path / "ws"
    workspace.mkdir()
    async with serve(service) as base_url:
        config = make_config(base_url, tmp_path / "state")
        async with make_api(config) as api:
            manager = ContextManager(api, WorkspaceRegistry(config.state_dir))
            context = await manager.acquire(workspace)
            assert await manager.dispose(workspace, context.context_id) is False
            current = manager.current(workspace)

    assert current is not None
    assert current.context_id == context.context_id


@pytest.mark.asyncio
async def test_forget_drops_context_and_session_without_remote_call(tmp_path):
    service = FakeService()
    workspace = tmp_path / "ws"
    workspace.mkdir()
    async with serve(service) as base_url:
        config = make_config(base_url, tmp_path / "state")
        async with make_api(config) as api:
            registry = WorkspaceRegistry(config.state_dir)
            manager = ContextManager(api, registry)
            await manager.acquire(workspace)
            registry.get(workspace).state.update(CURRENT_SESSION_ID, "sess-9")

            await manager.forget(workspace)

    state = registry.get(workspace).state
    assert state.get(EPHEMERAL_PROJECT_ID) is None
    assert state.get(CURRENT_SESSION_ID) is None
    assert service.cleanups == []
