"""Shared DHIS2 helpers -- credentials block, async API client, models.

Provides ``Dhis2Credentials`` (custom Block storing connection details and
producing the Authorization header) and ``Dhis2Client`` (async API client
for SQL view discovery and paged execution).

The DHIS2 play server (https://play.im.dhis2.org/dev) is publicly available
with credentials admin/district.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Protocol

import httpx
from prefect.blocks.core import Block
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from dhis2_sqlview.errors import UnrecognizedResponseShape

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------


class CredentialProvider(Protocol):
    """Anything that can produce an Authorization header value."""

    def authorization_header(self) -> str: ...


class FetchPage(Protocol):
    """Fetch one page of SQL view data and return the decoded JSON body."""

    async def __call__(self, sql_view_id: str, params: list[tuple[str, str]], page: int) -> Any: ...


# ---------------------------------------------------------------------------
# API Client
# ---------------------------------------------------------------------------


class Dhis2Client:
    """Authenticated async DHIS2 API client.

    Wraps an ``httpx.AsyncClient`` scoped to ``/api``.  The Authorization
    header comes from a ``CredentialProvider`` and is forwarded as-is.  Use
    as an async context manager or call ``await client.aclose()``.
    """

    def __init__(
        self,
        base_url: str,
        credentials: CredentialProvider,
        timeout: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._credentials = credentials
        self._timeout = timeout
        self._http = httpx.AsyncClient(
            base_url=f"{self._base_url}/api",
            headers={
                "Authorization": credentials.authorization_header(),
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def __reduce__(self) -> tuple[type, tuple[str, CredentialProvider, float]]:
        """Allow pickling so Prefect can hash this object for cache keys."""
        return (Dhis2Client, (self._base_url, self._credentials, self._timeout))

    async def __aenter__(self) -> Dhis2Client:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.aclose()

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()

    async def get_server_info(self) -> Dhis2ServerInfo:
        """Fetch /api/system/info -- version, revision, etc."""
        resp = await self._http.get("/system/info")
        resp.raise_for_status()
        return Dhis2ServerInfo.model_validate(resp.json())

    async def list_sql_views(self) -> list[Dhis2SqlView]:
        """Discover the SQL views registered on the server."""
        resp = await self._http.get(
            "/sqlViews.json",
            params={"paging": "false", "fields": "id,name,description,type,cacheStrategy,lastUpdated"},
        )
        resp.raise_for_status()
        data: dict[str, Any] = resp.json()
        return [Dhis2SqlView.model_validate(item) for item in data.get("sqlViews", [])]

    async def get_sql_view(self, uid: str) -> Dhis2SqlView:
        """Fetch one SQL view definition, including its SQL template."""
        resp = await self._http.get(
            f"/sqlViews/{uid}.json",
            params={"fields": "id,name,description,type,cacheStrategy,sqlQuery,lastUpdated"},
        )
        resp.raise_for_status()
        return Dhis2SqlView.model_validate(resp.json())

    async def execute_materialized_view(self, uid: str) -> bool:
        """Refresh a materialized SQL view before reading it.

        Plain views reject this call; that is not an error for the caller.

        Returns:
            True if the server accepted the refresh.
        """
        try:
            resp = await self._http.post(f"/sqlViews/{uid}/execute")
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning("View %s was not executed (HTTP %s); reading data anyway", uid, exc.response.status_code)
            return False
        return True

    async def fetch_sql_view_page(
        self,
        sql_view_id: str,
        params: list[tuple[str, str]],
        page: int,
    ) -> Any:
        """Fetch one page of SQL view data.

        Args:
            sql_view_id: SQL view UID.
            params: ``var``/``criteria``/``pageSize`` query parameters.
            page: 1-based page number.

        Returns:
            Decoded JSON body, untouched.

        Raises:
            UnrecognizedResponseShape: If the body is not JSON, e.g. a login page.
        """
        resp = await self._http.get(
            f"/sqlViews/{sql_view_id}/data.json",
            params=[*params, ("page", str(page))],
        )
        resp.raise_for_status()
        try:
            return resp.json()
        except ValueError as exc:
            content_type = resp.headers.get("content-type", "no content type")
            raise UnrecognizedResponseShape([f"<{content_type}>"], page=page) from exc

    async def fetch_metadata(
        self,
        endpoint: str,
        fields: str = ":owner",
    ) -> list[dict[str, Any]]:
        """Fetch all records from a metadata endpoint.

        Args:
            endpoint: API endpoint name (e.g. "dataElements").
            fields: The fields parameter for the DHIS2 API.

        Returns:
            List of metadata records as dicts.
        """
        resp = await self._http.get(
            f"/{endpoint}",
            params={"paging": "false", "fields": fields},
        )
        resp.raise_for_status()
        data: dict[str, Any] = resp.json()
        key = endpoint.split("?")[0]
        result: list[dict[str, Any]] = data[key]
        return result


# ---------------------------------------------------------------------------
# Credentials Block
# ---------------------------------------------------------------------------


class Dhis2Credentials(Block):
    """Credentials block for a DHIS2 instance.

    Stores connection details and returns a ``Dhis2Client`` via
    ``get_client()``.  A personal access token, when set, takes precedence
    over username/password.
    """

    _block_type_name = "dhis2-credentials"
    _block_type_slug = "dhis2-credentials"
    _description = "Credentials block for connecting to a DHIS2 instance."

    base_url: str = Field(
        default="https://play.im.dhis2.org/dev",
        description="DHIS2 instance base URL",
    )
    username: str = Field(default="admin", description="DHIS2 username")
    password: SecretStr = Field(
        default=SecretStr("district"),
        description="DHIS2 password",
    )
    api_token: SecretStr | None = Field(
        default=None,
        description="Personal access token (used instead of username/password)",
    )

    def authorization_header(self) -> str:
        """Return the Authorization header value for this instance."""
        if self.api_token is not None and self.api_token.get_secret_value():
            return f"ApiToken {self.api_token.get_secret_value()}"
        raw = f"{self.username}:{self.password.get_secret_value()}".encode()
        return f"Basic {base64.b64encode(raw).decode()}"

    def get_client(self, timeout: float = 60) -> Dhis2Client:
        """Return an authenticated ``Dhis2Client``."""
        return Dhis2Client(self.base_url, self, timeout=timeout)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class Dhis2ServerInfo(BaseModel):
    """Parsed /api/system/info response."""

    version: str = ""
    revision: str = ""
    build_time: str = Field(default="", validation_alias="buildTime")
    server_date: str = Field(default="", validation_alias="serverDate")

    model_config = ConfigDict(extra="allow")


class Dhis2SqlView(BaseModel):
    """A SQL view definition as returned by /api/sqlViews."""

    id: str
    name: str = ""
    description: str = ""
    type: str = "VIEW"
    cache_strategy: str = Field(default="", validation_alias="cacheStrategy")
    sql_query: str | None = Field(default=None, validation_alias="sqlQuery")
    last_updated: str = Field(default="", validation_alias="lastUpdated")

    model_config = ConfigDict(extra="allow")

    @property
    def is_materialized(self) -> bool:
        return self.type == "MATERIALIZED_VIEW"


class Dhis2Pager(BaseModel):
    """Paging metadata some DHIS2 versions attach to SQL view data."""

    page: int = 1
    page_count: int | None = Field(default=None, validation_alias="pageCount")
    total: int | None = None
    page_size: int | None = Field(default=None, validation_alias="pageSize")

    model_config = ConfigDict(extra="allow")

    @property
    def has_more(self) -> bool:
        return self.page_count is not None and self.page < self.page_count


# ---------------------------------------------------------------------------
# Credentials helpers
# ---------------------------------------------------------------------------


def get_dhis2_credentials(name: str = "dhis2") -> Dhis2Credentials:
    """Load a DHIS2 credentials block, falling back to inline defaults.

    Args:
        name: Block name to load (default ``"dhis2"``).

    Returns:
        Dhis2Credentials instance.
    """
    try:
        return Dhis2Credentials.load(name)  # type: ignore[return-value]
    except Exception:
        return Dhis2Credentials()
