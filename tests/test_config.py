from __future__ import annotations

import logging
from pathlib import Path

from unitpicker.utils.config import get_settings
from unitpicker.utils.logger import configure_logging


def test_settings_read_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "custom.db"))
    monkeypatch.setenv("ALLOCATION_MAX_RETRIES", "5")
    monkeypatch.setenv("BROADCAST_QUEUE_SIZE", "8")
    monkeypatch.setenv("SEED_DEMO_DATA", "no")
    monkeypatch.setenv("ADMIN_SECRET", "  s3cret  ")
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()

    assert settings.database_path == Path(tmp_path / "custom.db")
    assert settings.allocation_max_retries == 5
    assert settings.broadcast_queue_size == 8
    assert settings.seed_demo_data is False
    assert settings.admin_secret == "s3cret"


def test_blank_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("ADMIN_SECRET", "   ")
    monkeypatch.setenv("SQLITE_TIMEOUT_SECONDS", "")
    get_settings.cache_clear()
    try:
        settings = get_settings()
    finally:
        get_settings.cache_clear()

    assert settings.admin_secret is None
    assert settings.sqlite_timeout_seconds == 5.0


def test_explicit_log_level_adjusts_root_logger():
    configure_logging()
    root = logging.getLogger()
    previous = logging.getLevelName(root.level)
    try:
        configure_logging("warning")
        assert root.level == logging.WARNING
        configure_logging("not-a-level")
        assert root.level == logging.INFO
    finally:
        configure_logging(previous)
