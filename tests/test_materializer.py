"""Artifact retrieval and local materialization."""

from __future__ import annotations

import base64

import pytest

from reflexible.engine.materializer import ArtifactMaterializer
from reflexible.engine.errors import ProtocolError
from reflexible.engine.models import Artifact

from fake_service import FakeService, make_api, make_config, serve


FIRMWARE = bytes(range(256)) * 4


@pytest.mark.asyncio
async def test_text_and_binary_artifacts_are_written_under_destination(tmp_path):
    service = FakeService()
    service.artifacts = [
        {"path": "output/src/main.c", "content": "int main(void) { return 0; }\n"},
        {"path": "output/build/app.uf2", "content": base64.b64encode(FIRMWARE).decode()},
        {"path": "README.md", "content": "notes"},
    ]
    dest = tmp_path / "ws" / "output"
    async with serve(service) as base_url:
        async with make_api(make_config(base_url, tmp_path / "state")) as api:
            result = await ArtifactMaterializer(api).materialize("sess-1", dest)

    assert result.ok
    assert result.count == 3
    assert (dest / "src" / "main.c").read_text() == "int main(void) { return 0; }\n"
    assert (dest / "build" / "app.uf2").read_bytes() == FIRMWARE
    assert (dest / "README.md").read_text() == "notes"


@pytest.mark.asyncio
async def test_no_artifacts_writes_nothing(tmp_path):
    service = FakeService()
    dest = tmp_path / "ws" / "output"
    async with serve(service) as base_url:
        async with make_api(make_config(base_url, tmp_path / "state")) as api:
            result = await ArtifactMaterializer(api).materialize("sess-1", dest)

    assert result.count == 0
    assert result.ok
    assert not dest.exists()


@pytest.mark.asyncio
async def test_bad_artifacts_are_counted_without_stopping_others(tmp_path):
    service = FakeService()
    service.artifacts = [
        {"path": "output/../../escape.txt", "content": "nope"},
        {"path": "output/bad.bin", "content": "%%% not base64 %%%"},
        {"content": "no path"},
        {"path": "output/good.txt", "content": "fine"},
    ]
    dest = tmp_path / "ws" / "output"
    async with serve(service) as base_url:
        async with make_api(make_config(base_url, tmp_path / "state")) as api:
            result = await ArtifactMaterializer(api).materialize("sess-1", dest)

    assert result.count == 1
    assert result.failure_count == 3
    assert (dest / "good.txt").read_text() == "fine"
    assert not (tmp_path / "escape.txt").exists()


@pytest.mark.asyncio
async def test_materialize_twice_is_idempotent(tmp_path):
    service = FakeService()
    service.artifacts = [{"path": "output/a.txt", "content": "same"}]
    dest = tmp_path / "out"
    async with serve(service) as base_url:
        async with make_api(make_config(base_url, tmp_path / "state")) as api:
            materializer = ArtifactMaterializer(api)
            await materializer.materialize("sess-1", dest)
            await materializer.materialize("sess-1", dest)

    assert sorted(p.name for p in dest.iterdir()) == ["a.txt"]
    assert (dest / "a.txt").read_text() == "same"
    assert service.artifact_requests == 2


@pytest.mark.asyncio
async def test_non_list_artifacts_is_a_protocol_error(tmp_path):
    service = FakeService()
    service.artifacts = {"path": "x"}  # type: ignore[assignment]
    async with serve(service) as base_url:
        async with make_api(make_config(base_url, tmp_path / "state")) as api:
            with pytest.raises(ProtocolError):
                await ArtifactMaterializer(api).fetch("sess-1")


@pytest.mark.parametrize("path", ["/etc/passwd", "output/", "C:/x.txt", "a/../../b"])
def test_resolve_path_rejects_unsafe_paths(tmp_path, path):
    materializer = ArtifactMaterializer(api=None)
    with pytest.raises(ValueError):
        materializer.resolve_path(tmp_path, path)


def test_resolve_path_strips_configured_prefix(tmp_path):
    materializer = ArtifactMaterializer(api=None, prefix="build/")
    assert materializer.resolve_path(tmp_path, "build/fw/app.hex") == tmp_path / "fw" / "app.hex"
    assert materializer.resolve_path(tmp_path, "output/app.hex") == tmp_path / "output" / "app.hex"


def test_artifact_bytes():
    assert Artifact("a.txt", "é", "s").as_bytes() == "é".encode()
    assert Artifact("a.bin", b"\x00", "s").is_binary
