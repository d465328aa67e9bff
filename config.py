from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv


class ConfigError(Exception):
    pass


DEFAULT_TEST_EPOCH = "2016-11-25T20:47:00+00:00"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    log_level: str
    grace_timeout_ms: int
    test_epoch: datetime
    status_interval_sec: int
    probe_url: str
    http_timeout_sec: int
    env_file_path: Path


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got: {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be > 0, got: {value}")
    return value


def _get_log_level(name: str, default: str) -> str:
    raw = os.getenv(name, default).strip().upper() or default
    if raw not in _LOG_LEVELS:
        raise ConfigError(f"{name} must be one of {', '.join(_LOG_LEVELS)}, got: {raw!r}")
    return raw


def _get_datetime(name: str, default: str) -> datetime:
    raw = os.getenv(name, default).strip() or default
    try:
        value = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an ISO-8601 timestamp, got: {raw!r}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def log_level_value(config: Config) -> int:
    return getattr(logging, config.log_level, logging.INFO)


def load_config(env_file: str | None = ".env") -> Config:
    if env_file:
        load_dotenv(env_file)
        env_file_path = Path(env_file).expanduser().resolve()
    else:
        load_dotenv()
        env_file_path = Path(".env").resolve()

    return Config(
        log_level=_get_log_level("DUALCLOCK_LOG_LEVEL", "INFO"),
        grace_timeout_ms=_get_int("DUALCLOCK_GRACE_TIMEOUT_MS", 50),
        test_epoch=_get_datetime("DUALCLOCK_TEST_EPOCH", DEFAULT_TEST_EPOCH),
        status_interval_sec=_get_int("STATUS_INTERVAL_SEC", 5),
        probe_url=os.getenv("PROBE_URL", "").strip(),
        http_timeout_sec=_get_int("HTTP_TIMEOUT_SEC", 10),
        env_file_path=env_file_path,
    )
