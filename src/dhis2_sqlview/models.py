"""Data model for SQL view executions, results and cache entries."""

from __future__ import annotations

import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from dhis2_sqlview.config import MAX_PAGES
from dhis2_sqlview.errors import PageLimitExceeded

Scalar = str | int | float | bool | None


class MetadataKind(StrEnum):
    """Metadata types the scoring engine and URL builder understand."""

    DATA_ELEMENTS = "dataElements"
    INDICATORS = "indicators"
    PROGRAM_INDICATORS = "programIndicators"


def normalize_kind(kind: MetadataKind | str) -> MetadataKind:
    """Accept ``dataElements``, ``data_element``, ``DataElement`` and similar spellings.

    Raises:
        ValueError: If ``kind`` names no supported metadata type.
    """
    if isinstance(kind, MetadataKind):
        return kind
    lowered = str(kind).replace("_", "").replace("-", "").replace(" ", "").lower()
    if "program" in lowered and "indicator" in lowered:
        return MetadataKind.PROGRAM_INDICATORS
    if "indicator" in lowered:
        return MetadataKind.INDICATORS
    if "dataelement" in lowered:
        return MetadataKind.DATA_ELEMENTS
    raise ValueError(f"Unsupported metadata type: {kind!r}")


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class CanonicalTable(BaseModel):
    """Normalized tabular result: ordered headers plus row mappings.

    Row order is upstream emission order.  Every row's keys are a subset of
    ``headers``.
    """

    headers: tuple[str, ...] = ()
    rows: tuple[dict[str, Scalar], ...] = ()

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_columns(self) -> CanonicalTable:
        if len(set(self.headers)) != len(self.headers):
            raise ValueError(f"Duplicate header names: {list(self.headers)}")
        known = set(self.headers)
        for index, row in enumerate(self.rows):
            unknown = set(row) - known
            if unknown:
                raise ValueError(f"Row {index} has columns not in headers: {sorted(unknown)}")
        return self

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def column(self, name: str) -> list[Scalar]:
        """Return every value of one column, ``None`` where a row lacks it."""
        if name not in self.headers:
            raise KeyError(name)
        return [row.get(name) for row in self.rows]


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ExecutionRequest(BaseModel):
    """One request to run a SQL view."""

    sql_view_id: str = Field(min_length=1)
    parameters: dict[str, str] = {}
    filters: dict[str, str] = {}
    use_cache: bool = True
    cache_expiry_minutes: int | None = Field(default=None, gt=0)
    sql_query: str | None = None
    parameter_defaults: dict[str, str] = {}
    max_rows: int | None = Field(default=None, gt=0)


class ProgressEvent(BaseModel):
    """Emitted after every fetched page."""

    pages_fetched: int
    rows_so_far: int
    estimated_total: int | None = None


class ExecutionResult(BaseModel):
    """Merged table plus how it was obtained."""

    table: CanonicalTable
    fingerprint: str
    pages_fetched: int = 0
    from_cache: bool = False
    truncated: bool = False
    page_limit_exceeded: bool = False
    estimated_total: int | None = None
    warnings: list[str] = []

    @property
    def page_limit_error(self) -> PageLimitExceeded | None:
        """The limit warning as an error object, for callers that show it."""
        if not self.page_limit_exceeded:
            return None
        return PageLimitExceeded(self.pages_fetched, self.table.row_count, MAX_PAGES)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class CacheEntry(BaseModel):
    """A stored table.

    Fingerprint-keyed entries expire at ``expires_at``; saved analyses have
    no expiry and live until deleted.
    """

    id: str
    sql_view_id: str | None = None
    parameters_fingerprint: str | None = None
    table: CanonicalTable
    created_at: datetime.datetime
    expires_at: datetime.datetime | None = None
    name: str | None = None
    user_notes: str | None = None
    page_limit_exceeded: bool = False
    truncated: bool = False
    estimated_total: int | None = None
    warnings: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)

    @property
    def is_saved(self) -> bool:
        return self.expires_at is None

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class CacheStats(BaseModel):
    """Counts describing a cache store."""

    total_entries: int
    saved_entries: int
    expired_entries: int
    total_rows: int
