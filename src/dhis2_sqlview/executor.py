"""Multi-page SQL view execution.

``SqlViewExecutor.execute`` checks the cache, joins an identical execution
already in flight, or fetches pages one after another until the server runs
out of pages, the row cap is reached or ``MAX_PAGES`` pages were read.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any

import httpx
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from dhis2_sqlview.cache import Flight, ResultCacheStore
from dhis2_sqlview.config import MAX_PAGES, PipelineSettings
from dhis2_sqlview.dhis2 import Dhis2Client, Dhis2Pager, FetchPage
from dhis2_sqlview.errors import ExecutionCancelled, UpstreamError
from dhis2_sqlview.models import (
    CanonicalTable,
    ExecutionRequest,
    ExecutionResult,
    ProgressEvent,
    Scalar,
)
from dhis2_sqlview.normalizer import normalize
from dhis2_sqlview.parameters import build_query_params, resolve_parameters

logger = logging.getLogger(__name__)

OnProgress = Callable[[ProgressEvent], Any]


def fingerprint(sql_view_id: str, parameters: Mapping[str, str], filters: Mapping[str, str]) -> str:
    """Deterministic cache key for a view plus its parameters and filters."""
    payload = json.dumps(
        {"parameters": sorted(parameters.items()), "filters": sorted(filters.items())},
        separators=(",", ":"),
    )
    digest = hashlib.sha256(f"{sql_view_id}:{payload}".encode()).hexdigest()[:16]
    return f"{sql_view_id}_{digest}"


def _is_retryable(exc: BaseException) -> bool:
    """Transport errors and 5xx responses get one more attempt; 4xx never."""
    if isinstance(exc, httpx.TransportError):
        return True
    return isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code >= 500


def _read_pager(raw: Any) -> Dhis2Pager | None:
    if not isinstance(raw, Mapping):
        return None
    candidate = raw.get("pager")
    if candidate is None and isinstance(raw.get("listGrid"), Mapping):
        candidate = raw["listGrid"].get("pager")
    if not isinstance(candidate, Mapping):
        return None
    try:
        return Dhis2Pager.model_validate(candidate)
    except ValidationError as exc:
        logger.warning("Ignoring malformed pager %s: %s", dict(candidate), exc.errors())
        return None


class SqlViewExecutor:
    """Runs SQL views against a page fetcher and a result cache.

    Args:
        fetch_page: Page transport, usually ``Dhis2Client.fetch_sql_view_page``.
        store: Cache store shared by every executor of the session.
        settings: Row cap, page size, expiry and retry tunables.
    """

    def __init__(
        self,
        fetch_page: FetchPage,
        store: ResultCacheStore,
        settings: PipelineSettings | None = None,
    ) -> None:
        self._fetch_page = fetch_page
        self._store = store
        self._settings = settings or PipelineSettings()

    @classmethod
    def from_client(
        cls,
        client: Dhis2Client,
        store: ResultCacheStore,
        settings: PipelineSettings | None = None,
    ) -> SqlViewExecutor:
        return cls(client.fetch_sql_view_page, store, settings)

    @property
    def store(self) -> ResultCacheStore:
        return self._store

    async def execute(self, request: ExecutionRequest, on_progress: OnProgress | None = None) -> ExecutionResult:
        """Run ``request`` and return the merged table.

        Parameter validation happens before any network call.  A cache hit
        returns without fetching; a request identical to one in flight waits
        for that one instead of fetching again.

        Args:
            request: What to run.
            on_progress: Called after every page with a ``ProgressEvent``.

        Returns:
            ExecutionResult.  ``page_limit_exceeded`` is set (not raised) when
            the server still had pages after ``MAX_PAGES``.

        Raises:
            MissingParameter: A template placeholder has no value.
            UpstreamError: A page failed after its retry.
            UnrecognizedResponseShape: A page body had an unknown layout.
        """
        variables = resolve_parameters(request)
        key = fingerprint(request.sql_view_id, variables, request.filters)

        if request.use_cache:
            entry = self._store.get(key)
            if entry is not None:
                logger.info("Cache hit for %s (%d rows)", key, entry.table.row_count)
                return ExecutionResult(
                    table=entry.table,
                    fingerprint=key,
                    from_cache=True,
                    truncated=entry.truncated,
                    page_limit_exceeded=entry.page_limit_exceeded,
                    estimated_total=entry.estimated_total,
                    warnings=list(entry.warnings),
                )
            logger.debug("Cache miss for %s", key)

        return await self._store.flights.run(
            key,
            lambda flight: self._fetch_all(request, variables, key, flight),
            listener=on_progress,
        )

    async def _fetch_all(
        self,
        request: ExecutionRequest,
        variables: dict[str, str],
        key: str,
        flight: Flight,
    ) -> ExecutionResult:
        settings = self._settings
        max_rows = request.max_rows or settings.max_rows
        params = build_query_params(variables, request.filters, settings.page_size)

        headers: tuple[str, ...] = ()
        rows: list[dict[str, Scalar]] = []
        warnings: list[str] = []
        estimated_total: int | None = None
        truncated = False
        limit_hit = False
        page = 0
        more = True

        while more:
            if flight.stop.is_set():
                raise ExecutionCancelled(request.sql_view_id, page)
            if page >= MAX_PAGES:
                limit_hit = True
                message = f"Page limit of {MAX_PAGES} reached with more pages available; returning {len(rows)} rows"
                logger.warning("%s: %s", request.sql_view_id, message)
                warnings.append(message)
                break

            page += 1
            raw = await self._fetch_with_retry(request.sql_view_id, params, page)
            table = normalize(raw, page=page)
            pager = _read_pager(raw)

            if not headers:
                headers = table.headers
                rows.extend(table.rows)
            elif set(table.headers) != set(headers):
                message = self._header_drift(page, headers, table.headers)
                logger.warning("%s: %s", request.sql_view_id, message)
                warnings.append(message)
                rows.extend({name: row.get(name) for name in headers} for row in table.rows)
            else:
                rows.extend(table.rows)

            if pager is not None and pager.total is not None:
                estimated_total = pager.total
            more = self._has_more(pager, table, page)
            logger.info(
                "SQL view %s page %d: %d rows (%d so far)",
                request.sql_view_id,
                page,
                table.row_count,
                len(rows),
            )

            if len(rows) >= max_rows:
                if len(rows) > max_rows or more:
                    truncated = True
                    message = f"Row cap of {max_rows} reached after page {page}"
                    logger.warning("%s: %s", request.sql_view_id, message)
                    warnings.append(message)
                del rows[max_rows:]
                more = False

            flight.notify(ProgressEvent(pages_fetched=page, rows_so_far=len(rows), estimated_total=estimated_total))

        merged = CanonicalTable(headers=headers, rows=tuple(rows))
        if request.use_cache:
            self._store.cache_table(
                key,
                request.sql_view_id,
                merged,
                request.cache_expiry_minutes or settings.cache_expiry_minutes,
                page_limit_exceeded=limit_hit,
                truncated=truncated,
                estimated_total=estimated_total,
                warnings=tuple(warnings),
            )
        return ExecutionResult(
            table=merged,
            fingerprint=key,
            pages_fetched=page,
            truncated=truncated,
            page_limit_exceeded=limit_hit,
            estimated_total=estimated_total,
            warnings=warnings,
        )

    async def _fetch_with_retry(self, sql_view_id: str, params: list[tuple[str, str]], page: int) -> Any:
        raw: Any = None
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(2),
                wait=wait_exponential(multiplier=self._settings.retry_backoff_seconds, max=30),
                retry=retry_if_exception(_is_retryable),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    raw = await self._fetch_page(sql_view_id, params, page)
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(sql_view_id, page, str(exc), status_code=exc.response.status_code) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(sql_view_id, page, str(exc) or type(exc).__name__) from exc
        return raw

    def _has_more(self, pager: Dhis2Pager | None, table: CanonicalTable, page: int) -> bool:
        if table.row_count == 0:
            return False
        if pager is not None and pager.page_count is not None:
            return page < pager.page_count
        return table.row_count >= self._settings.page_size

    @staticmethod
    def _header_drift(page: int, expected: tuple[str, ...], seen: tuple[str, ...]) -> str:
        extra = [name for name in seen if name not in expected]
        missing = [name for name in expected if name not in seen]
        return f"Page {page} headers differ from page 1 (ignored extra: {extra}; null-filled missing: {missing})"
