from __future__ import annotations

import asyncio
import os
import sys

from dotenv import load_dotenv
from rich.console import Console

from .exceptions import IngestorError
from .ingest import run_ingestion
from .logging_utils import get_logger, setup_logging
from .mappings.registry import register_default_features
from .models import (DEFAULT_BATCH_LIMIT, DEFAULT_DB_CONNECT_TIMEOUT,
                     DEFAULT_DB_WORKERS, DEFAULT_DB_WRITE_TIMEOUT,
                     DEFAULT_LOG_LEVEL, DatabaseConfig, Enforcement,
                     IngestionConfig, SourceConfig)
from .sources import open_source

console = Console()
LOGGER = get_logger()

TRUTHY = {"1", "true", "yes", "on"}


def configure_logging() -> None:
    """Configure root logging to use Rich's styled output."""
    setup_logging(os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL), console=console)


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _database_url() -> str:
    url = os.getenv("DATABASE_URL", "").strip()
    if url:
        return url
    pg_user = os.getenv("POSTGRES_USER")
    pg_password = os.getenv("POSTGRES_PASSWORD")
    pg_db = os.getenv("POSTGRES_DB")
    pg_host = os.getenv("POSTGRES_HOST", os.getenv("PGHOST", "localhost"))
    pg_port = os.getenv("POSTGRES_PORT", os.getenv("PGPORT", "5432"))
    if not (pg_user and pg_password and pg_db):
        raise RuntimeError(
            "DATABASE_URL or POSTGRES_USER, POSTGRES_PASSWORD, and POSTGRES_DB environment variables are required"
        )
    return f"postgresql+asyncpg://{pg_user}:{pg_password}@{pg_host}:{pg_port}/{pg_db}"


def load_config() -> IngestionConfig:
    """Load ingestion configuration from environment variables."""
    load_dotenv()

    source_path = os.getenv("AIXM_SOURCE", "").strip()
    if not source_path:
        raise RuntimeError("AIXM_SOURCE environment variable is required")

    batch_limit = _int("BATCH_SIZE", DEFAULT_BATCH_LIMIT)
    if batch_limit < 1:
        raise RuntimeError("BATCH_SIZE must be at least 1")

    return IngestionConfig(
        database=DatabaseConfig(
            url=_database_url(),
            connect_timeout=_float("DATABASE_CONNECT_TIMEOUT", DEFAULT_DB_CONNECT_TIMEOUT),
            force_rebuild=os.getenv("DATABASE_FORCE_REBUILD", "false").strip().lower() in TRUTHY,
            workers=_int("DB_WORKERS", DEFAULT_DB_WORKERS),
            write_timeout=_float("DB_WRITE_TIMEOUT", DEFAULT_DB_WRITE_TIMEOUT),
        ),
        source=SourceConfig(
            path=source_path,
            enforcement=Enforcement.parse(os.getenv("EFFECTIVE_RANGE_ENFORCEMENT", "lenient")),
        ),
        batch_limit=batch_limit,
    )


def main() -> None:
    configure_logging()
    try:
        config = load_config()
        registry = register_default_features()
        source = open_source(config.source.path)
    except (RuntimeError, ValueError) as exc:
        LOGGER.error("Configuration error: %s", exc)
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(run_ingestion(config, registry, source, console=console))
    except KeyboardInterrupt:
        LOGGER.warning("Ingestion interrupted")
        sys.exit(130)
    except IngestorError as exc:
        LOGGER.error("%s: %s", type(exc).__name__, exc)
        print(f"Ingestion aborted: {exc}", file=sys.stderr)
        sys.exit(2)
    except Exception as exc:  # pragma: no cover - guard for CLI usage
        LOGGER.exception("Ingestion failed")
        print(f"Ingestion failed: {exc}", file=sys.stderr)
        sys.exit(3)


if __name__ == "__main__":
    main()
