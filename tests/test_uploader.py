"""Workspace input upload."""

from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from reflexible.engine.models import ExecutionContext
from reflexible.engine.uploader import WorkspaceUploader

from fake_service import FakeService, make_api, make_config, serve


def _workspace(root: Path) -> Path:
    (root / "boards").mkdir(parents=True)
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / "main.rfx").write_text("top", encoding="utf-8")
    (root / "boards" / "pico.rfx").write_text("board", encoding="utf-8")
    (root / "node_modules" / "pkg" / "vendored.rfx").write_text("skip", encoding="utf-8")
    (root / "notes.txt").write_text("skip", encoding="utf-8")
    return root


def test_collect_applies_globs_and_excludes(tmp_path):
    root = _workspace(tmp_path / "ws")
    uploader = WorkspaceUploader(api=None)
    assert uploader.collect(root) == [Path("boards/pico.rfx"), Path("main.rfx")]


def test_collect_with_custom_globs(tmp_path):
    root = _workspace(tmp_path / "ws")
    uploader = WorkspaceUploader(api=None, globs=["*.txt", "**/*.rfx"], excludes=["boards/*"])
    collected = uploader.collect(root)
    assert Path("notes.txt") in collected
    assert Path("boards/pico.rfx") not in collected


@pytest.mark.asyncio
async def test_upload_posts_matching_files(tmp_path):
    service = FakeService()
    root = _workspace(tmp_path / "ws")
    async with serve(service) as base_url:
        async with make_api(make_config(base_url, tmp_path / "state")) as api:
            count = await WorkspaceUploader(api).upload(ExecutionContext("proj-1"), root)

    assert count == 2
    project_id, files = service.uploads[0]
    assert project_id == "proj-1"
    assert files == [
        {"path": "boards/pico.rfx", "content": "board"},
        {"path": "main.rfx", "content": "top"},
    ]


@pytest.mark.asyncio
async def test_nothing_to_upload_makes_no_request(tmp_path):
    service = FakeService()
    root = tmp_path / "empty"
    root.mkdir()
    async with serve(service) as base_url:
        async with make_api(make_config(base_url, tmp_path / "state")) as api:
            assert await WorkspaceUploader(api).upload(ExecutionContext("proj-1"), root) == 0
    assert service.uploads == []


@pytest.mark.asyncio
async def test_workspace_walk_runs_off_the_event_loop(tmp_path):
    service = FakeService()
    root = _workspace(tmp_path / "ws")
    loop_thread = threading.get_ident()
    walk_threads: list[int] = []
    original = WorkspaceUploader.collect

    def tracking_collect(self, workspace_root):
        walk_threads.append(threading.get_ident())
        return original(self, workspace_root)

    async with serve(service) as base_url:
        async with make_api(make_config(base_url, tmp_path / "state")) as api:
            with patch.object(WorkspaceUploader, "collect", tracking_collect):
                count = await WorkspaceUploader(api).upload(ExecutionContext("proj-1"), root)

    assert count == 2
    assert walk_threads and loop_thread not in walk_threads
