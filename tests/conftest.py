"""Shared test fixtures."""

import importlib
import importlib.util
import sys
from pathlib import Path
from types import ModuleType
from typing import Any

import httpx
import pytest

from dhis2_sqlview.dhis2 import Dhis2Client, Dhis2Credentials

PROJECT_ROOT = Path(__file__).resolve().parent.parent

BASE_URL = "https://dhis2.example.org"


@pytest.fixture
def flow_module() -> type:
    """Factory fixture that imports a flow file by group and name.

    Usage::

        def test_something(flow_module):
            mod = flow_module("dhis2", "dhis2_sql_view_pipeline")
            mod.dhis2_sql_view_pipeline(...)
    """

    class _Loader:
        @staticmethod
        def __call__(group: str, name: str) -> ModuleType:
            path = PROJECT_ROOT / "flows" / group / f"{name}.py"
            spec = importlib.util.spec_from_file_location(name, path)
            assert spec and spec.loader
            mod = importlib.util.module_from_spec(spec)
            sys.modules[name] = mod
            spec.loader.exec_module(mod)
            return mod

    return _Loader


class FakeDhis2Server:
    """``httpx.MockTransport`` handler serving canned DHIS2 responses.

    ``views`` maps UID to a SQL view definition, ``pages`` maps UID to the
    data pages served for it (1-based via the ``page`` query parameter; an
    ``httpx.Response`` page is served as-is) and ``metadata`` maps an
    endpoint name to its records.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.views: dict[str, dict[str, Any]] = {}
        self.pages: dict[str, list[Any]] = {}
        self.metadata: dict[str, list[dict[str, Any]]] = {}
        self.execute_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.removeprefix("/api/").split("/")
        if parts == ["system", "info"]:
            return httpx.Response(200, json={"version": "2.41.1", "revision": "a1b2c3", "buildTime": "2024-06-01"})
        if parts == ["sqlViews.json"]:
            return httpx.Response(200, json={"sqlViews": list(self.views.values())})
        if parts[0] == "sqlViews" and len(parts) == 2:
            view = self.views.get(parts[1].removesuffix(".json"))
            return httpx.Response(200, json=view) if view else httpx.Response(404, json={"httpStatus": "Not Found"})
        if parts[0] == "sqlViews" and parts[2:] == ["execute"]:
            return httpx.Response(self.execute_status, json={})
        if parts[0] == "sqlViews" and parts[2:] == ["data.json"]:
            page = int(request.url.params.get("page", "1"))
            body = self.pages[parts[1]][page - 1]
            return body if isinstance(body, httpx.Response) else httpx.Response(200, json=body)
        if parts[0] in self.metadata:
            return httpx.Response(200, json={parts[0]: self.metadata[parts[0]]})
        return httpx.Response(404, json={"httpStatus": "Not Found"})

    def client(self, credentials: Any = None) -> Dhis2Client:
        return Dhis2Client(
            BASE_URL,
            credentials or Dhis2Credentials(base_url=BASE_URL),
            transport=httpx.MockTransport(self),
        )

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


@pytest.fixture
def dhis2_server() -> FakeDhis2Server:
    return FakeDhis2Server()
