# tests/conftest.py

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from background_tasks.config import Settings
from background_tasks.manager import BackgroundTaskManager
from background_tasks.storage import SnapshotStore

from .fakes import EventRecorder, FakeStatusClient


@pytest.fixture()
def settings() -> Settings:
    """Fast polling so state-machine tests finish in milliseconds."""
    return Settings(poll_interval=0.01)


@pytest.fixture()
def client() -> FakeStatusClient:
    return FakeStatusClient()


@pytest.fixture()
def store(tmp_path: Path):
    store = SnapshotStore(str(tmp_path / "tasks.db"))
    yield store
    store.close()


@pytest.fixture()
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest_asyncio.fixture()
async def manager(client: FakeStatusClient, store: SnapshotStore, settings: Settings, recorder: EventRecorder):
    """
    Manager wired with the scripted client and a real SQLite snapshot store.

    Cleanup runs inside the event loop so pending timers are cancelled
    before the loop closes.
    """
    manager = BackgroundTaskManager(client, store, settings=settings)
    manager.add_listener(recorder)
    yield manager
    manager.cleanup()
    await asyncio.sleep(0)
