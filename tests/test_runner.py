# tests/test_runner.py

from __future__ import annotations

import argparse

import pytest

from background_tasks.config import Settings
from background_tasks.manager import BackgroundTaskManager
from background_tasks.models import Task, TaskStatus, TaskType, now_ms
from background_tasks.runner import failed_tracked, parse_track, run
from background_tasks.storage import MemoryStore

from .fakes import FakeStatusClient


def test_parse_track() -> None:
    assert parse_track("image:abc:1") == ("image", "abc:1")
    with pytest.raises(argparse.ArgumentTypeError):
        parse_track("abc")
    with pytest.raises(argparse.ArgumentTypeError):
        parse_track("image:")


@pytest.mark.asyncio
async def test_run_waits_until_all_tasks_finish() -> None:
    client = FakeStatusClient()
    client.script("i1", {"status": "processing"}, {"status": "completed", "url": "https://x/i.png"})
    client.script("v1", {"status": "failed", "error": "timeout"})
    store = MemoryStore()
    manager = BackgroundTaskManager(client, store, settings=Settings(poll_interval=0.01))

    stats = await run(manager, [("image", "i1"), ("video", "v1")], node_id="n1", check_interval=0.01)

    assert stats == {"pending": 0, "processing": 0, "completed": 1, "failed": 1, "total": 2}
    assert {entry["taskId"] for entry in store.load("canvas_background_tasks")} == {"i1", "v1"}


@pytest.mark.asyncio
async def test_stale_failures_do_not_count_as_tracked_failures() -> None:
    client = FakeStatusClient()
    client.script("fresh", {"status": "completed", "url": "https://x/f.png"})
    store = MemoryStore()
    settings = Settings(poll_interval=0.01)
    store.save(settings.storage_key, [
        Task(task_id="stale", type=TaskType.IMAGE, status=TaskStatus.FAILED, error="old", created_at=now_ms()).to_dict(),
    ])
    manager = BackgroundTaskManager(client, store, settings=settings)
    tracks = [("image", "fresh")]

    stats = await run(manager, tracks, check_interval=0.01)

    assert stats["failed"] == 1
    assert failed_tracked(manager, tracks) == []
    assert failed_tracked(manager, [("image", "stale")]) == ["stale"]
