"""Tests for the DHIS2 SQL view pipeline flow."""

import asyncio
import importlib.util
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pandas as pd

from dhis2_sqlview.dhis2 import Dhis2Credentials
from dhis2_sqlview.models import CanonicalTable, ExecutionRequest, ExecutionResult

_spec = importlib.util.spec_from_file_location(
    "dhis2_sql_view_pipeline",
    Path(__file__).resolve().parent.parent.parent / "flows" / "dhis2" / "dhis2_sql_view_pipeline.py",
)
assert _spec and _spec.loader
_mod = importlib.util.module_from_spec(_spec)
sys.modules["dhis2_sql_view_pipeline"] = _mod
_spec.loader.exec_module(_mod)

PipelineReport = _mod.PipelineReport
write_result_csv = _mod.write_result_csv
build_report = _mod.build_report
render_markdown = _mod.render_markdown
dhis2_sql_view_pipeline = _mod.dhis2_sql_view_pipeline

VIEW = "qMYMT0iUGkG"
HEADERS = [{"name": "id"}, {"name": "name"}, {"name": "code"}, {"name": "description"}, {"name": "lastUpdated"}]

TABLE = CanonicalTable(
    headers=("id", "value"),
    rows=({"id": "fbfJHSPpUQD", "value": 3}, {"id": "cYeuwXTCPkU", "value": None}),
)


def _serve_view(server) -> None:
    server.views[VIEW] = {
        "id": VIEW,
        "name": "Data elements by group",
        "type": "VIEW",
        "sqlQuery": "select uid as id, name, code, description, lastupdated from dataelement where groupid = '${group}'",
    }
    server.pages[VIEW] = [
        {
            "listGrid": {
                "headers": HEADERS,
                "rows": [
                    ["fbfJHSPpUQD", "ANC 1st visit", "DE_ANC1", "First visit", "2026-01-10T00:00:00.000"],
                    ["cYeuwXTCPkU", "ANC 2nd visit", None, None, "2019-01-10T00:00:00.000"],
                ],
            },
            "pager": {"page": 1, "pageCount": 2, "total": 3},
        },
        {
            "listGrid": {
                "headers": HEADERS,
                "rows": [["not-a-uid", "Broken import", None, "Imported", None]],
            },
            "pager": {"page": 2, "pageCount": 2, "total": 3},
        },
    ]


def test_write_result_csv(tmp_path: Path) -> None:
    path = write_result_csv.fn(TABLE, str(tmp_path), VIEW)
    assert path.name == f"sql_view_{VIEW}.csv"
    frame = pd.read_csv(path)
    assert list(frame.columns) == ["id", "value"]
    assert len(frame) == 2


def test_build_report_without_annotations() -> None:
    result = ExecutionResult(table=TABLE, fingerprint=f"{VIEW}_x", pages_fetched=1, warnings=["drift"])
    report = build_report.fn("View", result, ExecutionRequest(sql_view_id=VIEW), Path("/tmp/x.csv"))
    assert report.row_count == 2
    assert report.column_count == 2
    assert report.quality_counts == {}
    assert report.warnings == ["drift"]


def test_render_markdown_lists_warnings() -> None:
    report = PipelineReport(
        sql_view_id=VIEW,
        view_name="View",
        row_count=2,
        column_count=2,
        pages_fetched=20,
        from_cache=False,
        truncated=False,
        page_limit_exceeded=True,
        warnings=["Page limit of 20 reached"],
        csv_path="/tmp/x.csv",
        generated_at="2026-06-01T00:00:00+00:00",
    )
    markdown = render_markdown(report, {})
    assert "# SQL View: View" in markdown
    assert "- Page limit of 20 reached" in markdown


def test_flow_runs(dhis2_server, tmp_path: Path) -> None:
    _serve_view(dhis2_server)
    creds = Dhis2Credentials(base_url="https://dhis2.example.org")
    with (
        patch.object(_mod, "get_dhis2_credentials", return_value=creds),
        patch.object(Dhis2Credentials, "get_client", MagicMock(return_value=dhis2_server.client(creds))),
    ):
        report = asyncio.run(
            dhis2_sql_view_pipeline(
                sql_view_id=VIEW,
                parameters={"group": "oDkJh5Ddh7d", "unused": "x"},
                kind="dataElements",
                output_dir=str(tmp_path),
            )
        )

    assert isinstance(report, PipelineReport)
    assert report.view_name == "Data elements by group"
    assert report.row_count == 3
    assert report.pages_fetched == 2
    assert report.url_errors == 1
    assert sum(report.quality_counts.values()) == 3
    assert Path(report.csv_path).exists()

    data_requests = [r for r in dhis2_server.requests if r.url.path.endswith("/data.json")]
    assert [r.url.params["page"] for r in data_requests] == ["1", "2"]
    assert data_requests[0].url.params.get_list("var") == ["group:oDkJh5Ddh7d"]
