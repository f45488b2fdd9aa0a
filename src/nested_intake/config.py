"""Configuration loading for the intake service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .models import (DEFAULT_API_BACKOFF_FACTOR, DEFAULT_API_BACKOFF_MAX,
                     DEFAULT_API_MAX_RETRIES, DEFAULT_API_TIMEOUT,
                     DEFAULT_API_URL, DEFAULT_DB_CONNECT_TIMEOUT, DEFAULT_HOST,
                     DEFAULT_PORT, ApiConfig, DatabaseConfig, IntakeConfig)


def _int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except ValueError:
        return default


def _bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    rules_path: Optional[str]
    strict: bool
    database_url: Optional[str]
    db_connect_timeout: float
    db_apply_schema: bool
    log_level: str
    host: str
    port: int
    api_url: str
    http_timeout: float
    http_max_retries: int
    http_backoff_factor: float
    http_backoff_max: float

    @classmethod
    def from_env(cls) -> "Settings":
        database_url = os.getenv("DATABASE_URL") or None
        if not database_url and os.getenv("POSTGRES_DB"):
            # Compose a DSN from the individual POSTGRES_* vars when no full URL is given.
            db = os.getenv("POSTGRES_DB")
            user = os.getenv("POSTGRES_USER", "postgres")
            password = os.getenv("POSTGRES_PASSWORD", "postgres")
            host = os.getenv("POSTGRES_HOST", "localhost")
            port = os.getenv("POSTGRES_PORT", "5432")
            database_url = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db}"

        return cls(
            rules_path=os.getenv("INTAKE_RULES_PATH") or None,
            strict=_bool(os.getenv("INTAKE_STRICT")),
            database_url=database_url,
            db_connect_timeout=_float(
                os.getenv("DATABASE_CONNECT_TIMEOUT"), DEFAULT_DB_CONNECT_TIMEOUT
            ),
            db_apply_schema=_bool(os.getenv("DATABASE_APPLY_SCHEMA")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            host=os.getenv("INTAKE_HOST", DEFAULT_HOST),
            port=_int(os.getenv("INTAKE_PORT"), DEFAULT_PORT),
            api_url=os.getenv("INTAKE_API_URL", DEFAULT_API_URL).rstrip("/"),
            http_timeout=_float(os.getenv("HTTP_TIMEOUT"), DEFAULT_API_TIMEOUT),
            http_max_retries=max(
                0, _int(os.getenv("HTTP_MAX_RETRIES"), DEFAULT_API_MAX_RETRIES)
            ),
            http_backoff_factor=_float(
                os.getenv("HTTP_BACKOFF_FACTOR"), DEFAULT_API_BACKOFF_FACTOR
            ),
            http_backoff_max=_float(
                os.getenv("HTTP_BACKOFF_MAX"), DEFAULT_API_BACKOFF_MAX
            ),
        )

    @property
    def database(self) -> Optional[DatabaseConfig]:
        if not self.database_url:
            return None
        return DatabaseConfig(
            url=self.database_url,
            connect_timeout=self.db_connect_timeout,
            apply_schema=self.db_apply_schema,
        )

    @property
    def api(self) -> ApiConfig:
        return ApiConfig(
            url=self.api_url,
            timeout=self.http_timeout,
            max_retries=self.http_max_retries,
            backoff_factor=self.http_backoff_factor,
            backoff_max=self.http_backoff_max,
        )

    @property
    def intake(self) -> IntakeConfig:
        return IntakeConfig(
            rules_path=self.rules_path, strict=self.strict, database=self.database
        )
