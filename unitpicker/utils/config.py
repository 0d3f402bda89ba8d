"""Environment-driven settings for the allocation service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(key: str, default: int) -> int:
    value = _env_str(key)
    return int(value) if value is not None else default


def _env_float(key: str, default: float) -> float:
    value = _env_str(key)
    return float(value) if value is not None else default


def _env_bool(key: str, default: bool) -> bool:
    value = _env_str(key)
    if value is None:
        return default
    return value.casefold() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    database_path: Path
    log_level: str
    admin_secret: Optional[str]
    sqlite_timeout_seconds: float
    allocation_max_retries: int
    allocation_lock_timeout_seconds: float
    broadcast_queue_size: int
    seed_demo_data: bool
    session_token_bytes: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests derive variants with ``replace``."""
    load_dotenv(PROJECT_ROOT / ".env")
    return Settings(
        app_name=_env_str("APP_NAME", "Unit Picker") or "Unit Picker",
        app_version=_env_str("APP_VERSION", "1.0.0") or "1.0.0",
        database_path=Path(
            _env_str("DATABASE_PATH", str(PROJECT_ROOT / "data" / "unitpicker.db"))
            or ""
        ),
        log_level=_env_str("LOG_LEVEL", "INFO") or "INFO",
        admin_secret=_env_str("ADMIN_SECRET"),
        sqlite_timeout_seconds=_env_float("SQLITE_TIMEOUT_SECONDS", 5.0),
        allocation_max_retries=_env_int("ALLOCATION_MAX_RETRIES", 3),
        allocation_lock_timeout_seconds=_env_float("ALLOCATION_LOCK_TIMEOUT_SECONDS", 10.0),
        broadcast_queue_size=_env_int("BROADCAST_QUEUE_SIZE", 256),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
        session_token_bytes=_env_int("SESSION_TOKEN_BYTES", 32),
    )
