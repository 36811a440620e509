from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    media_service_url: str | None
    media_timeout_seconds: float
    progress_batch_size: int
    cors_origins: tuple[str, ...]

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    port_raw = _getenv("PORT", "8000")
    media_timeout_raw = _getenv("MEDIA_TIMEOUT_SECONDS", "5")
    batch_size_raw = _getenv("PROGRESS_BATCH_SIZE", "200")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if log_json_raw not in ("true", "false", "1", "0"):
        raise ValueError(f"LOG_JSON must be true|false (got {log_json_raw!r})")

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    try:
        media_timeout = float(media_timeout_raw)
    except ValueError:
        raise ValueError(
            f"MEDIA_TIMEOUT_SECONDS must be a number (got {media_timeout_raw!r})"
        ) from None
    if media_timeout <= 0:
        raise ValueError(
            f"MEDIA_TIMEOUT_SECONDS must be positive (got {media_timeout_raw!r})"
        )

    try:
        batch_size = int(batch_size_raw)
    except ValueError:
        raise ValueError(
            f"PROGRESS_BATCH_SIZE must be an integer (got {batch_size_raw!r})"
        ) from None
    if batch_size <= 0:
        raise ValueError(
            f"PROGRESS_BATCH_SIZE must be positive (got {batch_size_raw!r})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("true", "1"),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        media_service_url=_getenv("MEDIA_SERVICE_URL", "") or None,
        media_timeout_seconds=media_timeout,
        progress_batch_size=batch_size,
        cors_origins=tuple(
            o.strip()
            for o in _getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
            if o.strip()
        ),
    )


SETTINGS = load_settings()
