"""Error taxonomy shared by registration, extraction and loading."""

from __future__ import annotations

from typing import Optional


class IngestorError(RuntimeError):
    """Base class for errors that abort an ingestion run."""


class ConfigurationError(IngestorError):
    """Feature metadata or schema declarations are inconsistent."""


class ExtractionError(IngestorError):
    """A mapping path does not fit the shape of the record being read."""

    def __init__(
        self,
        message: str,
        *,
        feature: Optional[str] = None,
        path: Optional[str] = None,
    ) -> None:
        self.reason = message
        self.feature = feature
        self.path = path
        details = []
        if feature:
            details.append(f"feature={feature}")
        if path:
            details.append(f"path={path}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class SourceError(IngestorError):
    """The AIXM source could not be opened or parsed."""


class StaleDataError(IngestorError):
    """The source data is outside its effective range under strict enforcement."""
