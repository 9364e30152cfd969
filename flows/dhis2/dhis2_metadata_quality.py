"""DHIS2 Metadata Quality.

Fetches data elements, indicators or program indicators, scores each record
on description, code, active status and recency, and reports the label
distribution together with the weakest records and what to fix.

Prefect approach:    async client in a task, library scoring wrapped in
                     reusable tasks, markdown artifact for the report.
"""

from __future__ import annotations

import asyncio
import datetime
from typing import Any

from dotenv import load_dotenv
from prefect import flow, get_run_logger, task
from prefect.artifacts import create_markdown_artifact
from prefect.cache_policies import NO_CACHE
from pydantic import BaseModel

from dhis2_sqlview.config import PipelineSettings
from dhis2_sqlview.dhis2 import Dhis2Client, get_dhis2_credentials
from dhis2_sqlview.models import MetadataKind, normalize_kind
from dhis2_sqlview.normalizer import normalize
from dhis2_sqlview.quality import recommendations
from dhis2_sqlview.tasks import AnnotatedRow, annotate_rows, quality_distribution

QUALITY_FIELDS = "id,name,code,description,lastUpdated"

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class WeakRecord(BaseModel):
    """A low-scoring record and how to improve it."""

    id: str
    name: str
    score: int
    label: str
    recommendations: list[str]
    maintenance_url: str | None = None


class MetadataQualityReport(BaseModel):
    """Quality summary for one metadata type."""

    kind: MetadataKind
    total: int
    average_score: float
    distribution: dict[str, int]
    weakest: list[WeakRecord]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@task(cache_policy=NO_CACHE)
async def fetch_records(client: Dhis2Client, kind: MetadataKind) -> list[dict[str, Any]]:
    """Fetch every record of one metadata type.

    Args:
        client: Authenticated DHIS2 API client.
        kind: Metadata type to fetch.

    Returns:
        List of raw metadata dicts.
    """
    records = await client.fetch_metadata(kind.value, fields=QUALITY_FIELDS)
    print(f"Fetched {len(records)} {kind.value}")
    return records


@task
def quality_report(kind: MetadataKind, rows: list[AnnotatedRow], limit: int = 10) -> MetadataQualityReport:
    """Summarize scored rows.

    Args:
        kind: Metadata type of the rows.
        rows: Scored rows.
        limit: How many of the weakest records to list.

    Returns:
        MetadataQualityReport.
    """
    ranked = sorted(rows, key=lambda row: row.quality.score)
    weakest = [
        WeakRecord(
            id=str(row.values.get("id") or ""),
            name=str(row.values.get("name") or ""),
            score=row.quality.score,
            label=row.quality.label,
            recommendations=recommendations(row.quality),
            maintenance_url=row.endpoints.web_ui if row.endpoints else None,
        )
        for row in ranked[:limit]
    ]
    average = sum(row.quality.score for row in rows) / len(rows) if rows else 0.0
    return MetadataQualityReport(
        kind=kind,
        total=len(rows),
        average_score=round(average, 2),
        distribution=quality_distribution(rows),
        weakest=weakest,
    )


# ---------------------------------------------------------------------------
# Flow
# ---------------------------------------------------------------------------


@flow(name="dhis2_metadata_quality", log_prints=True)
async def dhis2_metadata_quality(
    kind: str = "dataElements",
    credentials_block: str = "dhis2",
    limit: int = 10,
) -> MetadataQualityReport:
    """Score the metadata quality of one DHIS2 metadata type.

    Args:
        kind: dataElements, indicators or programIndicators.
        credentials_block: Name of the Dhis2Credentials block.
        limit: How many of the weakest records to report.

    Returns:
        MetadataQualityReport.
    """
    metadata_kind = normalize_kind(kind)
    settings = PipelineSettings.from_env()
    creds = get_dhis2_credentials(credentials_block)
    async with creds.get_client(timeout=settings.timeout_seconds) as client:
        records = await fetch_records(client, metadata_kind)
    if not records:
        get_run_logger().warning("No %s returned by %s", metadata_kind.value, creds.base_url)

    table = normalize(records)
    window = datetime.timedelta(days=settings.recency_days)
    rows = annotate_rows(table, metadata_kind, creds.base_url, window=window)
    report = quality_report(metadata_kind, rows, limit)

    lines = [
        f"# Metadata quality: {metadata_kind.value}",
        "",
        f"- Records: {report.total}",
        f"- Average score: {report.average_score} / 4",
        "",
        "| Label | Records |",
        "|-------|---------|",
    ]
    lines += [f"| {label} | {count} |" for label, count in report.distribution.items()]
    if report.weakest:
        lines += ["", "## Weakest records", "", "| Name | Score | Fix |", "|------|-------|-----|"]
        lines += [f"| {w.name or w.id} | {w.score} ({w.label}) | {'; '.join(w.recommendations)} |" for w in report.weakest]
    await create_markdown_artifact(
        key="dhis2-metadata-quality",
        markdown="\n".join(lines) + "\n",
        description=f"Quality scores for {metadata_kind.value}",
    )
    print(f"{report.total} {metadata_kind.value}, average score {report.average_score}")
    return report


if __name__ == "__main__":
    load_dotenv()
    asyncio.run(dhis2_metadata_quality())
