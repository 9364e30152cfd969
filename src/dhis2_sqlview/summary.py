"""Column summaries for result tables, built on pandas."""

from __future__ import annotations

from typing import Literal

import pandas as pd
from pydantic import BaseModel

from dhis2_sqlview.models import CanonicalTable

ColumnType = Literal["numeric", "boolean", "date", "text"]

_BOOLEAN_STRINGS = {"true", "false", "yes", "no"}


class ColumnSummary(BaseModel):
    """Detected type and basic statistics for one column."""

    name: str
    type: ColumnType
    null_count: int
    unique_values: int
    min: float | str | None = None
    max: float | str | None = None
    mean: float | None = None


def to_dataframe(table: CanonicalTable) -> pd.DataFrame:
    """Rows as a DataFrame with columns in header order."""
    return pd.DataFrame(list(table.rows), columns=list(table.headers))


def _detect(values: pd.Series) -> ColumnType:
    if values.empty:
        return "text"
    if values.map(lambda v: isinstance(v, bool)).all() or values.astype(str).str.lower().isin(_BOOLEAN_STRINGS).all():
        return "boolean"
    numeric = pd.to_numeric(values, errors="coerce")
    if numeric.notna().mean() > 0.8:
        return "numeric"
    as_text = values.astype(str)
    if as_text.str.match(r"\d{4}-\d{2}-\d{2}").mean() > 0.5:
        return "date"
    return "text"


def summarize_column(name: str, series: pd.Series) -> ColumnSummary:
    values = series.dropna()
    kind = _detect(values)
    summary = ColumnSummary(
        name=name,
        type=kind,
        null_count=int(series.isna().sum()),
        unique_values=int(values.astype(str).nunique()),
    )
    if kind == "numeric":
        numeric = pd.to_numeric(values, errors="coerce").dropna()
        summary.min = float(numeric.min())
        summary.max = float(numeric.max())
        summary.mean = round(float(numeric.mean()), 4)
    elif kind == "date":
        dates = pd.to_datetime(values.astype(str), errors="coerce", utc=True).dropna()
        if not dates.empty:
            summary.min = dates.min().isoformat()
            summary.max = dates.max().isoformat()
    return summary


def summarize_table(table: CanonicalTable) -> dict[str, ColumnSummary]:
    """Summarize every column of ``table``, keyed by header."""
    frame = to_dataframe(table)
    return {name: summarize_column(name, frame[name]) for name in table.headers}
