"""Reusable Prefect tasks for the SQL view pipeline.

Import these into any flow; they wrap the library modules so that each step
shows up as its own task run.
"""

from __future__ import annotations

import datetime

from prefect import task
from prefect.cache_policies import NO_CACHE
from pydantic import BaseModel

from dhis2_sqlview import quality, urls
from dhis2_sqlview.dhis2 import Dhis2Client, Dhis2SqlView
from dhis2_sqlview.errors import InvalidUid
from dhis2_sqlview.executor import SqlViewExecutor
from dhis2_sqlview.models import CanonicalTable, ExecutionRequest, ExecutionResult, MetadataKind, ProgressEvent, Scalar
from dhis2_sqlview.quality import QualityAssessment
from dhis2_sqlview.summary import ColumnSummary, summarize_table
from dhis2_sqlview.urls import ApiEndpointSet, EndpointOptions


class AnnotatedRow(BaseModel):
    """One result row with its quality score and endpoint URLs."""

    values: dict[str, Scalar]
    quality: QualityAssessment
    endpoints: ApiEndpointSet | None = None
    url_error: str | None = None


@task(cache_policy=NO_CACHE)
async def load_sql_view(client: Dhis2Client, uid: str) -> Dhis2SqlView:
    """Fetch a SQL view definition, refreshing it first if it is materialized.

    Args:
        client: Authenticated DHIS2 API client.
        uid: SQL view UID.

    Returns:
        Dhis2SqlView including its SQL template.
    """
    view = await client.get_sql_view(uid)
    print(f"SQL view {view.id}: {view.name} ({view.type})")
    if view.is_materialized:
        refreshed = await client.execute_materialized_view(uid)
        print(f"Materialized view refresh {'accepted' if refreshed else 'skipped'}")
    return view


@task(cache_policy=NO_CACHE)
async def execute_sql_view(executor: SqlViewExecutor, request: ExecutionRequest) -> ExecutionResult:
    """Run a SQL view through the executor, printing progress per page.

    Args:
        executor: Executor bound to a client and a cache store.
        request: View id, parameters and filters.

    Returns:
        ExecutionResult.
    """

    def _progress(event: ProgressEvent) -> None:
        total = f"/{event.estimated_total}" if event.estimated_total is not None else ""
        print(f"Page {event.pages_fetched}: {event.rows_so_far}{total} rows")

    result = await executor.execute(request, on_progress=_progress)
    source = "cache" if result.from_cache else f"{result.pages_fetched} pages"
    print(f"SQL view {request.sql_view_id}: {result.table.row_count} rows from {source}")
    return result


@task
def annotate_rows(
    table: CanonicalTable,
    kind: MetadataKind | str,
    base_url: str,
    uid_column: str = "id",
    options: EndpointOptions | None = None,
    now: datetime.datetime | None = None,
    window: datetime.timedelta = quality.RECENCY_WINDOW,
) -> list[AnnotatedRow]:
    """Score every row and attach its endpoint URLs.

    A row whose UID is rejected keeps its score; the reason goes into
    ``url_error`` instead of dropping the row.

    Args:
        table: Result table, one metadata record per row.
        kind: Metadata type of the rows.
        base_url: DHIS2 instance URL.
        uid_column: Column holding the metadata UID.
        options: Period, org unit and format for the URLs.
        now: Evaluation time for the recency check.
        window: How recent ``lastUpdated`` must be.

    Returns:
        List of AnnotatedRow in table order.
    """
    annotated: list[AnnotatedRow] = []
    for row in table.rows:
        assessment = quality.score(row, kind=kind, now=now, window=window)
        endpoints: ApiEndpointSet | None = None
        url_error: str | None = None
        try:
            endpoints = urls.build(kind, row.get(uid_column), base_url, options)  # type: ignore[arg-type]
        except InvalidUid as exc:
            url_error = exc.reason
        annotated.append(
            AnnotatedRow(values=dict(row), quality=assessment, endpoints=endpoints, url_error=url_error)
        )
    rejected = sum(1 for row in annotated if row.url_error)
    print(f"Annotated {len(annotated)} rows ({rejected} without URLs)")
    return annotated


@task
def summarize(table: CanonicalTable) -> dict[str, ColumnSummary]:
    """Per-column type, null and unique counts for a result table."""
    summaries = summarize_table(table)
    for name, column in summaries.items():
        print(f"{name}: {column.type}, {column.null_count} nulls, {column.unique_values} unique")
    return summaries


def quality_distribution(rows: list[AnnotatedRow]) -> dict[str, int]:
    """Count rows per quality label, in label order."""
    counts = {label: 0 for label, _color in quality.QUALITY_LABELS}
    for row in rows:
        counts[row.quality.label] += 1
    return counts
