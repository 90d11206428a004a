"""Tests for settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from lmsbridge.core.config import Settings
from lmsbridge.workers.model_worker import WorkerTimeouts


def test_defaults():
    """Defaults match a local LM Studio install."""
    settings = Settings(_env_file=None)

    assert settings.lmstudio_base_url == "http://localhost:1234"
    assert settings.lmstudio_cli == "lms"
    assert settings.lmstudio_models_dir == Path("~/.lmstudio/models").expanduser()
    assert settings.nats_url == "nats://localhost:4222"
    assert settings.nats_queue_group is None
    assert settings.log_dir is None


def test_env_overrides(monkeypatch, tmp_path):
    """Environment variables override defaults, case-insensitively."""
    monkeypatch.setenv("LMSTUDIO_BASE_URL", "http://studio:1234/")
    monkeypatch.setenv("lmstudio_models_dir", str(tmp_path))
    monkeypatch.setenv("PULL_TIMEOUT", "42")
    monkeypatch.setenv("LOG_LEVEL", "warning")

    settings = Settings(_env_file=None)

    assert settings.lmstudio_base_url == "http://studio:1234"
    assert settings.lmstudio_models_dir == tmp_path
    assert settings.pull_timeout == 42
    assert settings.log_level == "WARNING"


def test_debug_forces_console_level():
    """Debug mode logs everything to the console."""
    assert Settings(_env_file=None, debug=True, log_level="ERROR").console_level == "DEBUG"
    assert Settings(_env_file=None, log_level="ERROR").console_level == "ERROR"


def test_subjects():
    """Subjects are built from the configured prefix."""
    assert Settings(_env_file=None).subject("list") == "models.list"
    assert Settings(_env_file=None, subject_prefix="lab.models.").subject("pull") == "lab.models.pull"
    assert Settings(_env_file=None, subject_prefix="").subject("chat") == "chat"


def test_settings_are_frozen():
    """Settings cannot be mutated after construction."""
    settings = Settings(_env_file=None)

    with pytest.raises(ValidationError):
        settings.lmstudio_base_url = "http://elsewhere"


def test_timeouts_must_be_positive():
    """Zero or negative deadlines are rejected."""
    with pytest.raises(ValidationError):
        Settings(_env_file=None, chat_timeout=0)


def test_worker_timeouts_from_settings():
    """Per-operation deadlines come from settings."""
    timeouts = WorkerTimeouts.from_settings(
        Settings(_env_file=None, list_timeout=1, pull_timeout=2, delete_timeout=3, chat_timeout=4)
    )

    assert (timeouts.listing, timeouts.pull, timeouts.delete, timeouts.chat) == (1, 2, 3, 4)


def test_worker_timeout_defaults():
    """Default deadlines per operation class."""
    timeouts = WorkerTimeouts()

    assert (timeouts.listing, timeouts.pull, timeouts.delete, timeouts.chat) == (30, 600, 120, 120)
