"""Tests for the dhis2_sql_view_export deployment flow."""

import asyncio
import importlib.util
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pandas as pd

from dhis2_sqlview.dhis2 import Dhis2Credentials

_spec = importlib.util.spec_from_file_location(
    "deploy_dhis2_sql_view_export",
    Path(__file__).resolve().parent.parent / "deployments" / "dhis2_sql_view_export" / "flow.py",
)
assert _spec and _spec.loader
_mod = importlib.util.module_from_spec(_spec)
sys.modules["deploy_dhis2_sql_view_export"] = _mod
_spec.loader.exec_module(_mod)

dhis2_sql_view_export_flow = _mod.dhis2_sql_view_export_flow


def test_flow_writes_csv(dhis2_server, tmp_path: Path) -> None:
    dhis2_server.views["qMYMT0iUGkG"] = {"id": "qMYMT0iUGkG", "name": "Org units", "type": "MATERIALIZED_VIEW"}
    dhis2_server.pages["qMYMT0iUGkG"] = [
        [{"uid": "ImspTQPwCqd", "name": "Sierra Leone"}, {"uid": "O6uvpzGd5pu", "name": "Bo"}],
    ]
    creds = Dhis2Credentials(base_url="https://dhis2.example.org")
    with (
        patch.object(_mod, "get_dhis2_credentials", return_value=creds),
        patch.object(Dhis2Credentials, "get_client", MagicMock(return_value=dhis2_server.client(creds))),
    ):
        path = asyncio.run(dhis2_sql_view_export_flow(sql_view_id="qMYMT0iUGkG", output_dir=str(tmp_path / "out")))

    frame = pd.read_csv(path)
    assert list(frame["name"]) == ["Sierra Leone", "Bo"]
    assert "/api/sqlViews/qMYMT0iUGkG/execute" in dhis2_server.paths()


def test_documented_registration_commands_exist() -> None:
    root = Path(__file__).resolve().parent.parent
    doc = _mod.__doc__ or ""
    scripts = [word for word in doc.split() if word.endswith(".py")]
    assert scripts == ["deployments/dhis2_sql_view_export/deploy.py"]
    assert all((root / script).is_file() for script in scripts)
    assert "prefect deploy" not in doc or (root / "deployments" / "dhis2_sql_view_export" / "prefect.yaml").is_file()
