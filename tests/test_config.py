# tests/test_config.py

from __future__ import annotations

import json
from pathlib import Path

import pytest

from background_tasks.config import SettingsError, load_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("BG_TASKS_API_BASE", "BG_TASKS_TOKEN", "BG_TASKS_DB"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_file() -> None:
    settings = load_settings()

    assert settings.poll_interval == 3.0
    assert settings.storage_key == "canvas_background_tasks"
    assert settings.max_task_age_ms == 24 * 60 * 60 * 1000
    assert settings.max_consecutive_errors is None


def test_reads_section_from_settings_file(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({
        "tti": {"apiUrl": "ignored"},
        "backgroundTasks": {
            "apiBase": "https://api.example.com",
            "tenantId": "acme",
            "tenantKey": "secret",
            "pollInterval": 5,
            "maxConsecutiveErrors": 20,
        },
    }), encoding="utf-8")

    settings = load_settings(str(path))

    assert settings.api_base == "https://api.example.com"
    assert settings.tenant_id == "acme"
    assert settings.poll_interval == 5
    assert settings.max_consecutive_errors == 20


def test_env_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"backgroundTasks": {"apiBase": "https://file"}}), encoding="utf-8")
    monkeypatch.setenv("BG_TASKS_API_BASE", "https://env")
    monkeypatch.setenv("BG_TASKS_DB", str(tmp_path / "tasks.db"))

    settings = load_settings(str(path))

    assert settings.api_base == "https://env"
    assert settings.db_path == str(tmp_path / "tasks.db")


def test_invalid_values_raise(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"backgroundTasks": {"pollInterval": 0}}), encoding="utf-8")

    with pytest.raises(SettingsError, match="Invalid background task settings"):
        load_settings(str(path))


def test_unreadable_file_raises(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{", encoding="utf-8")

    with pytest.raises(SettingsError, match="Failed to read settings file"):
        load_settings(str(path))
