from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from cadre_mcp.config import CadreSettings, get_settings


@pytest.fixture(autouse=True)
def _isolated(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults() -> None:
    settings = CadreSettings()

    assert settings.lock_ttl_minutes == 120
    assert settings.max_queue_length == 3
    assert settings.task_duration_ms == 300_000
    assert settings.default_confidence == 0.8
    assert settings.workflow_paths == (Path("workflows"),)
    assert settings.tmux_path is None


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CADRE_MAX_QUEUE_LENGTH", "5")
    monkeypatch.setenv("CADRE_LOG_LEVEL", " debug ")
    monkeypatch.setenv("CADRE_LOCK_TTL_MINUTES", "30")

    settings = CadreSettings()

    assert settings.max_queue_length == 5
    assert settings.log_level == "DEBUG"
    assert settings.lock_ttl_minutes == 30


def test_workflow_paths_split_on_path_separator() -> None:
    settings = CadreSettings(CADRE_WORKFLOW_PATHS=f"one{os.pathsep} two")

    assert settings.workflow_paths == (Path("one"), Path("two"))


@pytest.mark.parametrize(
    "alias, value",
    [
        ("CADRE_LOG_LEVEL", "chatty"),
        ("CADRE_MAX_QUEUE_LENGTH", 0),
        ("CADRE_SESSION_TTL_HOURS", 0),
        ("CADRE_DEFAULT_CONFIDENCE", 1.5),
    ],
)
def test_invalid_values_are_rejected(alias: str, value) -> None:
    with pytest.raises(ValidationError):
        CadreSettings(**{alias: value})


def test_get_settings_resolves_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CADRE_STATE_DIR", "state")

    settings = get_settings()

    assert settings.state_dir == (tmp_path / "state").resolve()
    assert settings.state_dir.is_absolute()
    assert get_settings() is settings
