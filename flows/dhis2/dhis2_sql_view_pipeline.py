"""DHIS2 SQL View Pipeline.

Loads a SQL view definition, runs it with the given variables and filters
across as many pages as the server returns, writes the merged table to CSV
and publishes a markdown report.  When ``kind`` is given every row is also
scored for metadata quality and gets its API endpoint URLs.

Prefect approach:    async tasks around the executor, a credentials Block
                     for auth, one cache store per flow run.
"""

from __future__ import annotations

import asyncio
import datetime
import tempfile
from pathlib import Path

from dotenv import load_dotenv
from prefect import flow, get_run_logger, task
from prefect.artifacts import create_markdown_artifact
from pydantic import BaseModel

from dhis2_sqlview.cache import ResultCacheStore
from dhis2_sqlview.config import PipelineSettings, timestamp
from dhis2_sqlview.dhis2 import get_dhis2_credentials
from dhis2_sqlview.executor import SqlViewExecutor
from dhis2_sqlview.models import CanonicalTable, ExecutionRequest, ExecutionResult
from dhis2_sqlview.summary import to_dataframe
from dhis2_sqlview.tasks import (
    AnnotatedRow,
    annotate_rows,
    execute_sql_view,
    load_sql_view,
    quality_distribution,
    summarize,
)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class PipelineReport(BaseModel):
    """Outcome of one pipeline run."""

    sql_view_id: str
    view_name: str
    row_count: int
    column_count: int
    pages_fetched: int
    from_cache: bool
    truncated: bool
    page_limit_exceeded: bool
    warnings: list[str]
    csv_path: str
    generated_at: str
    quality_counts: dict[str, int] = {}
    url_errors: int = 0


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@task
def write_result_csv(table: CanonicalTable, output_dir: str, sql_view_id: str) -> Path:
    """Write the merged table to CSV with columns in header order.

    Args:
        table: Merged result table.
        output_dir: Output directory path.
        sql_view_id: Used in the file name.

    Returns:
        Path to the CSV file.
    """
    path = Path(output_dir) / f"sql_view_{sql_view_id}.csv"
    to_dataframe(table).to_csv(path, index=False)
    print(f"Wrote {table.row_count} rows to {path}")
    return path


@task
def build_report(
    view_name: str,
    result: ExecutionResult,
    request: ExecutionRequest,
    csv_path: Path,
    annotated: list[AnnotatedRow] | None = None,
) -> PipelineReport:
    """Collect the run's numbers into a PipelineReport."""
    annotated = annotated or []
    return PipelineReport(
        sql_view_id=request.sql_view_id,
        view_name=view_name,
        row_count=result.table.row_count,
        column_count=len(result.table.headers),
        pages_fetched=result.pages_fetched,
        from_cache=result.from_cache,
        truncated=result.truncated,
        page_limit_exceeded=result.page_limit_exceeded,
        warnings=result.warnings,
        csv_path=str(csv_path),
        generated_at=timestamp(),
        quality_counts=quality_distribution(annotated) if annotated else {},
        url_errors=sum(1 for row in annotated if row.url_error),
    )


def render_markdown(report: PipelineReport, summaries: dict) -> str:
    lines = [
        f"# SQL View: {report.view_name or report.sql_view_id}",
        "",
        "| Field | Value |",
        "|-------|-------|",
        f"| View | {report.sql_view_id} |",
        f"| Rows | {report.row_count} |",
        f"| Columns | {report.column_count} |",
        f"| Pages | {report.pages_fetched} |",
        f"| From cache | {report.from_cache} |",
        f"| Truncated | {report.truncated} |",
        f"| Page limit hit | {report.page_limit_exceeded} |",
        f"| Generated | {report.generated_at} |",
        "",
        "## Columns",
        "",
        "| Column | Type | Nulls | Unique |",
        "|--------|------|-------|--------|",
    ]
    for name, column in summaries.items():
        lines.append(f"| {name} | {column.type} | {column.null_count} | {column.unique_values} |")
    if report.quality_counts:
        lines += ["", "## Metadata quality", "", "| Label | Rows |", "|-------|------|"]
        lines += [f"| {label} | {count} |" for label, count in report.quality_counts.items()]
        lines.append(f"\nRows without URLs: {report.url_errors}")
    if report.warnings:
        lines += ["", "## Warnings", ""]
        lines += [f"- {warning}" for warning in report.warnings]
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Flow
# ---------------------------------------------------------------------------


@flow(name="dhis2_sql_view_pipeline", log_prints=True)
async def dhis2_sql_view_pipeline(
    sql_view_id: str,
    parameters: dict[str, str] | None = None,
    filters: dict[str, str] | None = None,
    kind: str | None = None,
    uid_column: str = "id",
    output_dir: str | None = None,
    credentials_block: str = "dhis2",
    use_cache: bool = True,
) -> PipelineReport:
    """Run a SQL view end to end and report on the result.

    Args:
        sql_view_id: SQL view UID.
        parameters: Values for the view's ``${name}`` placeholders.
        filters: Column filters sent as ``criteria``.
        kind: Metadata type of the rows; enables quality scoring and URLs.
        uid_column: Column holding metadata UIDs when ``kind`` is set.
        output_dir: Output directory. Uses temp dir if not provided.
        credentials_block: Name of the Dhis2Credentials block.
        use_cache: Whether to consult and fill the result cache.

    Returns:
        PipelineReport.
    """
    if output_dir is None:
        output_dir = tempfile.mkdtemp(prefix="dhis2_sql_view_")
    Path(output_dir).mkdir(parents=True, exist_ok=True)

    settings = PipelineSettings.from_env()
    creds = get_dhis2_credentials(credentials_block)

    async with creds.get_client(timeout=settings.timeout_seconds) as client:
        with ResultCacheStore() as store:
            view = await load_sql_view(client, sql_view_id)
            request = ExecutionRequest(
                sql_view_id=sql_view_id,
                parameters=parameters or {},
                filters=filters or {},
                sql_query=view.sql_query,
                use_cache=use_cache,
            )
            executor = SqlViewExecutor.from_client(client, store, settings)
            result = await execute_sql_view(executor, request)

    csv_path = write_result_csv(result.table, output_dir, sql_view_id)
    summaries = summarize(result.table)
    annotated = None
    if kind:
        window = datetime.timedelta(days=settings.recency_days)
        annotated = annotate_rows(result.table, kind, creds.base_url, uid_column, window=window)
    report = build_report(view.name, result, request, csv_path, annotated)

    logger = get_run_logger()
    for warning in report.warnings:
        logger.warning("SQL view %s: %s", sql_view_id, warning)

    await create_markdown_artifact(
        key="dhis2-sql-view-report",
        markdown=render_markdown(report, summaries),
        description=f"SQL view {sql_view_id} execution report",
    )
    print(f"SQL view {sql_view_id}: {report.row_count} rows, {report.column_count} columns -> {report.csv_path}")
    return report


if __name__ == "__main__":
    load_dotenv()
    asyncio.run(dhis2_sql_view_pipeline(sql_view_id="qMYMT0iUGkG"))
