from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

SCHEMA_VERSION = "0.4.0"

DEFAULT_DB_CONNECT_TIMEOUT = 60.0
DEFAULT_DB_WORKERS = 4
DEFAULT_DB_WRITE_TIMEOUT = 120.0
DEFAULT_BATCH_LIMIT = 1000
DEFAULT_EFFECTIVE_DAYS = 28
DEFAULT_LOG_LEVEL = "INFO"


class Enforcement(Enum):
    """How an out-of-date source is treated."""

    IGNORE = "ignore"
    LENIENT = "lenient"
    STRICT = "strict"

    @classmethod
    def parse(cls, value: str) -> "Enforcement":
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(member.value for member in cls)
            raise ValueError(
                f"Unknown effective range enforcement '{value}' (expected one of: {choices})"
            ) from None


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    connect_timeout: float = DEFAULT_DB_CONNECT_TIMEOUT
    force_rebuild: bool = False
    workers: int = DEFAULT_DB_WORKERS
    write_timeout: float = DEFAULT_DB_WRITE_TIMEOUT


@dataclass(frozen=True)
class SourceConfig:
    path: str
    enforcement: Enforcement = Enforcement.LENIENT
    effective_days: int = DEFAULT_EFFECTIVE_DAYS


@dataclass(frozen=True)
class IngestionConfig:
    database: DatabaseConfig
    source: Optional[SourceConfig] = None
    batch_limit: int = DEFAULT_BATCH_LIMIT
