# tests/test_task_status.py

from __future__ import annotations

import httpx
import pytest

from services.task_status import TaskStatusClient, TaskStatusError


def make_client(handler, **kwargs) -> TaskStatusClient:
    return TaskStatusClient("https://api.example.com/", transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_variants_hit_their_endpoints() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json={"status": "processing"})

    client = make_client(handler)
    await client.get_image_task_status("i1")
    await client.get_video_task_status("v1")
    await client.get_video_hd_task_status("h1")
    await client.for_type("video-hd")("h2")
    await client.for_type("video")("v2")
    await client.for_type("image")("i2")

    assert seen == [
        "/api/images/task/i1",
        "/api/video/tasks/v1",
        "/api/video/hd/tasks/h1",
        "/api/video/hd/tasks/h2",
        "/api/video/tasks/v2",
        "/api/images/task/i2",
    ]


@pytest.mark.asyncio
async def test_auth_and_tenant_headers() -> None:
    captured: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(request.headers)
        return httpx.Response(200, json={"status": "completed", "url": "https://x/a.png"})

    client = make_client(handler, token="tok", tenant_id="acme", tenant_key="secret")
    result = await client.get_image_task_status("i1")

    assert result["url"] == "https://x/a.png"
    assert captured["authorization"] == "Bearer tok"
    assert captured["x-tenant-id"] == "acme"
    assert captured["x-tenant-key"] == "secret"


@pytest.mark.asyncio
async def test_missing_task_raises_not_found() -> None:
    client = make_client(lambda request: httpx.Response(404))

    with pytest.raises(TaskStatusError, match="task not found") as exc_info:
        await client.get_video_task_status("gone")
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_error_body_message_is_used() -> None:
    client = make_client(lambda request: httpx.Response(500, json={"message": "upstream busy"}))

    with pytest.raises(TaskStatusError, match="upstream busy"):
        await client.get_image_task_status("i1")


@pytest.mark.asyncio
async def test_error_without_body_uses_default_message() -> None:
    client = make_client(lambda request: httpx.Response(502, text="<html>bad gateway</html>"))

    with pytest.raises(TaskStatusError, match="Failed to query task status"):
        await client.get_image_task_status("i1")
