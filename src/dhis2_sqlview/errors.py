"""Error taxonomy for the SQL view pipeline.

Every error carries a ``details()`` dict with the page, shape, UID or
parameter that caused it, so a debug panel can show it verbatim.
"""

from __future__ import annotations

from typing import Any


class SqlViewError(Exception):
    """Base class for all pipeline errors."""

    def details(self) -> dict[str, Any]:
        """Return structured diagnostics for display."""
        return {"error": type(self).__name__, "message": str(self)}


class UnrecognizedResponseShape(SqlViewError):
    """A page body matched none of the known response shapes."""

    def __init__(self, keys: list[str], page: int | None = None) -> None:
        self.keys = keys
        self.page = page
        where = f"page {page}" if page is not None else "response"
        super().__init__(f"Unrecognized response shape on {where}; top-level keys: {keys}")

    def details(self) -> dict[str, Any]:
        return {**super().details(), "page": self.page, "keys": self.keys}


class UpstreamError(SqlViewError):
    """Transport or HTTP failure talking to the DHIS2 server."""

    def __init__(
        self,
        sql_view_id: str,
        page: int,
        detail: str,
        status_code: int | None = None,
    ) -> None:
        self.sql_view_id = sql_view_id
        self.page = page
        self.status_code = status_code
        self.detail = detail
        status = f"HTTP {status_code}" if status_code is not None else "transport error"
        super().__init__(f"SQL view {sql_view_id} page {page} failed ({status}): {detail}")

    def details(self) -> dict[str, Any]:
        return {
            **super().details(),
            "sql_view_id": self.sql_view_id,
            "page": self.page,
            "status_code": self.status_code,
            "detail": self.detail,
        }


class PageLimitExceeded(SqlViewError):
    """The server still had pages left when the safety limit was hit.

    Not raised by the executor: it is attached to the result alongside the
    rows that were already fetched.
    """

    def __init__(self, pages_fetched: int, rows_fetched: int, limit: int) -> None:
        self.pages_fetched = pages_fetched
        self.rows_fetched = rows_fetched
        self.limit = limit
        super().__init__(
            f"Stopped after {pages_fetched} pages (limit {limit}); {rows_fetched} rows kept, more were available"
        )

    def details(self) -> dict[str, Any]:
        return {
            **super().details(),
            "pages_fetched": self.pages_fetched,
            "rows_fetched": self.rows_fetched,
            "limit": self.limit,
        }


class MissingParameter(SqlViewError):
    """A template placeholder has no usable value."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Missing value for SQL view parameter '{name}'")

    def details(self) -> dict[str, Any]:
        return {**super().details(), "parameter": self.name}


class InvalidUid(SqlViewError, ValueError):
    """An identifier is not an 11-character alphanumeric DHIS2 UID."""

    def __init__(self, uid: object, reason: str) -> None:
        self.uid = uid
        self.reason = reason
        super().__init__(f"Invalid DHIS2 UID {uid!r}: {reason}")

    def details(self) -> dict[str, Any]:
        return {**super().details(), "uid": repr(self.uid), "reason": self.reason}


class ExecutionCancelled(SqlViewError):
    """Every caller abandoned the execution before it finished."""

    def __init__(self, sql_view_id: str, pages_fetched: int) -> None:
        self.sql_view_id = sql_view_id
        self.pages_fetched = pages_fetched
        super().__init__(f"Execution of SQL view {sql_view_id} cancelled after {pages_fetched} pages")

    def details(self) -> dict[str, Any]:
        return {**super().details(), "sql_view_id": self.sql_view_id, "pages_fetched": self.pages_fetched}
