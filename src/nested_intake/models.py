from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_API_URL = "http://127.0.0.1:8000"
DEFAULT_API_TIMEOUT = 30.0
DEFAULT_API_MAX_RETRIES = 3
DEFAULT_API_BACKOFF_FACTOR = 0.5
DEFAULT_API_BACKOFF_MAX = 8.0
DEFAULT_DB_CONNECT_TIMEOUT = 60.0
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


@dataclass(frozen=True)
class ApiConfig:
    url: str
    timeout: float = DEFAULT_API_TIMEOUT
    max_retries: int = DEFAULT_API_MAX_RETRIES
    backoff_factor: float = DEFAULT_API_BACKOFF_FACTOR
    backoff_max: float = DEFAULT_API_BACKOFF_MAX


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    connect_timeout: float = DEFAULT_DB_CONNECT_TIMEOUT
    apply_schema: bool = False


@dataclass(frozen=True)
class IntakeConfig:
    rules_path: Optional[str] = None
    strict: bool = False
    database: Optional[DatabaseConfig] = None
