"""Result cache store and single-flight registry.

The store is an explicit object: create one per session, pass it to the
executor, and ``close()`` it when the session ends.  Expiry is lazy: an
expired entry is dropped when a lookup finds it, there is no sweeper.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from dhis2_sqlview.models import CacheEntry, CacheStats, CanonicalTable

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime.datetime]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.UTC)


# ---------------------------------------------------------------------------
# Single flight
# ---------------------------------------------------------------------------


class Flight:
    """One running piece of work and the callers waiting on it.

    ``stop`` is set once every waiter has left.  ``notify`` passes an event
    to each waiter's listener; a listener that raises is logged and skipped.
    """

    def __init__(self) -> None:
        self.stop = asyncio.Event()
        self.listeners: list[Callable[[Any], Any]] = []
        self.waiters = 0
        self.task: asyncio.Future[Any] | None = None

    def notify(self, event: Any) -> None:
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed handling %r", event)


class SingleFlight:
    """Coalesce concurrent work per key into one running task.

    The work runs in its own task, so a caller that gets cancelled only
    stops waiting.  When the last waiter leaves, the flight's ``stop``
    event is set; the work is expected to check it between requests.
    """

    def __init__(self) -> None:
        self._flights: dict[str, Flight] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._flights

    def __len__(self) -> int:
        return len(self._flights)

    def _forget(self, key: str, flight: Flight, task: asyncio.Future[Any]) -> None:
        if self._flights.get(key) is flight:
            del self._flights[key]
        if not task.cancelled():
            # Mark the outcome as retrieved even when nobody is left waiting.
            task.exception()

    async def run(
        self,
        key: str,
        work: Callable[[Flight], Awaitable[T]],
        listener: Callable[[Any], Any] | None = None,
    ) -> T:
        """Run ``work`` for ``key``, or join the run already in progress.

        Args:
            key: De-duplication key (the request fingerprint).
            work: Coroutine factory receiving the ``Flight``.
            listener: Receives every event the work passes to ``Flight.notify``
                while this caller waits.

        Returns:
            Whatever ``work`` returns.
        """
        flight = self._flights.get(key)
        if flight is None or flight.task is None or flight.task.done() or flight.stop.is_set():
            flight = Flight()
            task = asyncio.ensure_future(work(flight))
            flight.task = task
            self._flights[key] = flight
            task.add_done_callback(lambda done, key=key, flight=flight: self._forget(key, flight, done))
        else:
            logger.info("Joining in-flight execution %s", key)

        task = flight.task
        if listener is not None:
            flight.listeners.append(listener)
        flight.waiters += 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            flight.waiters -= 1
            if flight.waiters == 0 and not task.done():
                logger.info("All callers left execution %s; stopping after the current page", key)
                flight.stop.set()
            raise
        finally:
            if listener is not None and listener in flight.listeners:
                flight.listeners.remove(listener)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ResultCacheStore:
    """In-memory store of cached tables and saved analyses."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._by_fingerprint: dict[str, str] = {}
        self._clock = clock or utcnow
        self._closed = False
        self.flights = SingleFlight()

    def __enter__(self) -> ResultCacheStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Drop every entry and refuse further use."""
        self._entries.clear()
        self._by_fingerprint.clear()
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Cache store is closed")

    def now(self) -> datetime.datetime:
        return self._clock()

    def _remove(self, entry_id: str) -> CacheEntry | None:
        entry = self._entries.pop(entry_id, None)
        if entry is not None and entry.parameters_fingerprint is not None:
            if self._by_fingerprint.get(entry.parameters_fingerprint) == entry_id:
                del self._by_fingerprint[entry.parameters_fingerprint]
        return entry

    # -- core operations ----------------------------------------------------

    def get(self, fingerprint: str) -> CacheEntry | None:
        """Return the live entry cached under ``fingerprint`` (or with that id).

        Expired entries are removed by the lookup.
        """
        self._check_open()
        entry_id = self._by_fingerprint.get(fingerprint, fingerprint)
        entry = self._entries.get(entry_id)
        if entry is None:
            return None
        if entry.is_expired(self.now()):
            self._remove(entry_id)
            logger.debug("Cache entry %s expired at %s", fingerprint, entry.expires_at)
            return None
        return entry

    def put(self, entry: CacheEntry) -> None:
        """Insert or replace an entry.

        An entry replaces both the entry with the same id and the entry
        cached under the same fingerprint.
        """
        self._check_open()
        self._remove(entry.id)
        if entry.parameters_fingerprint is not None:
            previous = self._by_fingerprint.get(entry.parameters_fingerprint)
            if previous is not None:
                self._remove(previous)
            self._by_fingerprint[entry.parameters_fingerprint] = entry.id
        self._entries[entry.id] = entry
        logger.debug("Cached %s (%d rows)", entry.id, entry.table.row_count)

    def delete(self, entry_id: str) -> bool:
        self._check_open()
        removed = self._remove(entry_id) is not None
        if removed:
            logger.debug("Deleted cache entry %s", entry_id)
        return removed

    def list(self) -> list[CacheEntry]:
        """Return live entries, newest first."""
        self.clear_expired()
        return sorted(self._entries.values(), key=lambda entry: entry.created_at, reverse=True)

    def save_named(
        self,
        name: str,
        notes: str | None,
        table: CanonicalTable,
        sql_view_id: str | None = None,
    ) -> str:
        """Save a table as a named analysis that never expires.

        Returns:
            The new entry id.
        """
        self._check_open()
        entry = CacheEntry(
            id=f"saved_{uuid.uuid4().hex}",
            sql_view_id=sql_view_id,
            table=table,
            created_at=self.now(),
            expires_at=None,
            name=name,
            user_notes=notes,
        )
        self._entries[entry.id] = entry
        logger.info("Saved analysis '%s' as %s", name, entry.id)
        return entry.id

    # -- helpers ------------------------------------------------------------

    def cache_table(
        self,
        fingerprint: str,
        sql_view_id: str,
        table: CanonicalTable,
        expiry_minutes: int,
        page_limit_exceeded: bool = False,
        truncated: bool = False,
        estimated_total: int | None = None,
        warnings: tuple[str, ...] = (),
    ) -> CacheEntry:
        """Create and store an expiring entry for an execution result."""
        now = self.now()
        entry = CacheEntry(
            id=fingerprint,
            sql_view_id=sql_view_id,
            parameters_fingerprint=fingerprint,
            table=table,
            created_at=now,
            expires_at=now + datetime.timedelta(minutes=expiry_minutes),
            name=f"SQL View {sql_view_id}",
            page_limit_exceeded=page_limit_exceeded,
            truncated=truncated,
            estimated_total=estimated_total,
            warnings=warnings,
        )
        self.put(entry)
        return entry

    def update_entry(
        self,
        entry_id: str,
        *,
        name: str | None = None,
        user_notes: str | None = None,
    ) -> CacheEntry:
        """Replace an entry with a renamed / re-annotated copy.

        Raises:
            KeyError: If no entry has ``entry_id``.
        """
        self._check_open()
        entry = self._entries[entry_id]
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if user_notes is not None:
            changes["user_notes"] = user_notes
        updated = entry.model_copy(update=changes)
        self._entries[entry_id] = updated
        return updated

    def entries_for_view(self, sql_view_id: str) -> list[CacheEntry]:
        return [entry for entry in self.list() if entry.sql_view_id == sql_view_id]

    def clear_view(self, sql_view_id: str) -> int:
        self._check_open()
        ids = [entry.id for entry in self._entries.values() if entry.sql_view_id == sql_view_id]
        for entry_id in ids:
            self._remove(entry_id)
        if ids:
            logger.info("Cleared %d cache entries for view %s", len(ids), sql_view_id)
        return len(ids)

    def clear_expired(self) -> int:
        self._check_open()
        now = self.now()
        expired = [entry.id for entry in self._entries.values() if entry.is_expired(now)]
        for entry_id in expired:
            self._remove(entry_id)
        return len(expired)

    def clear(self) -> None:
        self._check_open()
        count = len(self._entries)
        self._entries.clear()
        self._by_fingerprint.clear()
        logger.info("Cleared all cache entries (%d)", count)

    def stats(self) -> CacheStats:
        self._check_open()
        now = self.now()
        entries = self._entries.values()
        return CacheStats(
            total_entries=len(entries),
            saved_entries=sum(1 for entry in entries if entry.is_saved),
            expired_entries=sum(1 for entry in entries if entry.is_expired(now)),
            total_rows=sum(entry.table.row_count for entry in entries),
        )
