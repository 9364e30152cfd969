"""Shared configuration defaults for the SQL view pipeline and its flows."""

from __future__ import annotations

import datetime
import os

from pydantic import BaseModel, Field

# Keyword defaults for scheduled flows; page-level retries happen inside the executor.
FLOW_DEFAULTS: dict[str, object] = {
    "retries": 1,
    "retry_delay_seconds": 10,
    "log_prints": True,
}

# Hard stop for a single execution, regardless of what the server reports.
MAX_PAGES = 20

DEFAULT_CACHE_EXPIRY_MINUTES = 60

_ENV_FIELDS: dict[str, str] = {
    "SQLVIEW_MAX_ROWS": "max_rows",
    "SQLVIEW_PAGE_SIZE": "page_size",
    "SQLVIEW_CACHE_EXPIRY_MINUTES": "cache_expiry_minutes",
    "SQLVIEW_RETRY_BACKOFF_SECONDS": "retry_backoff_seconds",
    "SQLVIEW_TIMEOUT_SECONDS": "timeout_seconds",
    "SQLVIEW_RECENCY_DAYS": "recency_days",
}


class PipelineSettings(BaseModel):
    """Tunables for fetching, caching and scoring SQL view results."""

    max_rows: int = Field(default=50_000, gt=0, description="Row cap for one execution")
    page_size: int = Field(default=1_000, gt=0, description="Rows requested per page")
    cache_expiry_minutes: int = Field(default=DEFAULT_CACHE_EXPIRY_MINUTES, gt=0)
    retry_backoff_seconds: float = Field(default=1.0, ge=0)
    timeout_seconds: float = Field(default=60, gt=0)
    recency_days: int = Field(default=365, gt=0)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> PipelineSettings:
        """Build settings from ``SQLVIEW_*`` environment variables.

        Unset variables keep their defaults.  Call ``load_dotenv()`` first
        if the values live in a ``.env`` file.

        Args:
            environ: Mapping to read instead of ``os.environ``.

        Returns:
            PipelineSettings instance.
        """
        source = os.environ if environ is None else environ
        values = {field: source[key] for key, field in _ENV_FIELDS.items() if source.get(key)}
        return cls.model_validate(values)


def timestamp() -> str:
    """Return the current UTC timestamp as an ISO-8601 string."""
    return datetime.datetime.now(tz=datetime.UTC).isoformat()
