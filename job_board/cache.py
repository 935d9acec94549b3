"""
In-memory caches for upstream job data.

Two caches sit in front of the feed:

* ``DatasetCache`` holds the entire dataset (tens of thousands of records)
  for an hour. An expired read refreshes synchronously by paging through
  the feed. The refresh is single-flight: concurrent readers of a stale
  cache wait for one ingestion instead of each starting their own.
* ``QueryResultCache`` holds the filtered, sorted (not yet paginated)
  result list of a search for a few minutes so paging through results does
  not recompute them.

Both caches take a ``clock`` returning epoch milliseconds so tests can move
time forward without sleeping.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Iterable, List, Optional, TypeVar

from .fetchers import UpstreamClient
from .models import SearchQuery, UpstreamJobRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time() * 1000)


@dataclass
class CacheEntry(Generic[T]):
    value: T
    fetched_at_ms: int
    ttl_ms: int

    def age_ms(self, now_ms: int) -> int:
        return now_ms - self.fetched_at_ms

    def is_fresh(self, now_ms: int) -> bool:
        return self.age_ms(now_ms) <= self.ttl_ms


def dedupe_by_id(records: Iterable[UpstreamJobRecord]) -> List[UpstreamJobRecord]:
    """Drop records whose ``job_id`` was already seen, keeping upstream order.

    Records without an identifier are kept as-is.
    """
    seen = set()
    unique: List[UpstreamJobRecord] = []
    for record in records:
        job_id = record.get("job_id")
        if job_id is not None:
            if job_id in seen:
                continue
            seen.add(job_id)
        unique.append(record)
    return unique


class DatasetCache:
    """The full upstream dataset, refreshed wholesale when it expires.

    Args:
        client: Upstream client used to page through the feed.
        ttl_seconds: How long a fetched dataset stays valid.
        batch_size: Records requested per page.
        max_records: Safety cap on the total number of records ingested.
        clock: Epoch-milliseconds clock.
    """

    def __init__(
        self,
        client: UpstreamClient,
        ttl_seconds: int = 3600,
        batch_size: int = 1000,
        max_records: int = 50_000,
        clock: Clock = system_clock,
    ) -> None:
        self.client = client
        self.ttl_ms = int(ttl_seconds * 1000)
        self.batch_size = batch_size
        self.max_records = max_records
        self._clock = clock
        self._entry: Optional[CacheEntry[List[UpstreamJobRecord]]] = None
        self._index: Dict[str, UpstreamJobRecord] = {}
        self._refresh_lock = threading.Lock()

    def _fresh_entry(self) -> Optional[CacheEntry[List[UpstreamJobRecord]]]:
        entry = self._entry
        if entry is not None and entry.is_fresh(self._clock()):
            return entry
        return None

    def get_all(self) -> List[UpstreamJobRecord]:
        """Return the full dataset, refreshing it first if it has expired."""
        entry = self._fresh_entry()
        if entry is not None:
            return entry.value
        with self._refresh_lock:
            # Another caller may have refreshed while we waited
            entry = self._fresh_entry()
            if entry is not None:
                return entry.value
            return self._refresh()

    def peek(self) -> Optional[List[UpstreamJobRecord]]:
        """Return the dataset if it is fresh, without ever refreshing it."""
        entry = self._fresh_entry()
        return entry.value if entry is not None else None

    def find(self, job_id: str) -> Optional[UpstreamJobRecord]:
        """Look up one record in the current fresh dataset, if any."""
        if self.peek() is None:
            return None
        return self._index.get(job_id)

    def status(self) -> Dict[str, object]:
        entry = self._entry
        now = self._clock()
        return {
            "cached": entry is not None and entry.is_fresh(now),
            "size": len(entry.value) if entry is not None else 0,
            "age_seconds": round(entry.age_ms(now) / 1000, 1) if entry is not None else None,
        }

    def _ingest(self) -> List[UpstreamJobRecord]:
        records: List[UpstreamJobRecord] = []
        offset = 0
        while len(records) < self.max_records:
            batch = self.client.fetch_batch(offset=offset, limit=self.batch_size)
            if not batch:
                break
            records.extend(batch)
            offset += self.batch_size
        if len(records) > self.max_records:
            logger.warning(
                "Dataset reached the safety cap of %s records; remaining pages skipped",
                self.max_records,
            )
            records = records[: self.max_records]
        return records

    def _refresh(self) -> List[UpstreamJobRecord]:
        logger.info("Refreshing full jobs dataset from upstream")
        started = self._clock()
        records = dedupe_by_id(self._ingest())
        self._index = {r["job_id"]: r for r in records if r.get("job_id") is not None}
        self._entry = CacheEntry(value=records, fetched_at_ms=self._clock(), ttl_ms=self.ttl_ms)
        logger.info(
            "Cached %s jobs for %ss (refresh took %sms)",
            len(records),
            self.ttl_ms // 1000,
            self._clock() - started,
        )
        return records


class QueryResultCache:
    """Short-lived memo of computed search results keyed by ``SearchQuery``.

    Expired entries are dropped lazily on read and purged whenever a new
    entry is stored.
    """

    def __init__(self, ttl_seconds: int = 300, clock: Clock = system_clock) -> None:
        self.ttl_ms = int(ttl_seconds * 1000)
        self._clock = clock
        self._entries: Dict[str, CacheEntry[List[UpstreamJobRecord]]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, query: SearchQuery) -> Optional[List[UpstreamJobRecord]]:
        key = query.cache_key()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not entry.is_fresh(self._clock()):
                del self._entries[key]
                return None
            return entry.value

    def put(self, query: SearchQuery, records: List[UpstreamJobRecord]) -> None:
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            self._entries[query.cache_key()] = CacheEntry(
                value=records, fetched_at_ms=now, ttl_ms=self.ttl_ms
            )

    def _purge_expired(self, now_ms: int) -> None:
        expired = [k for k, e in self._entries.items() if not e.is_fresh(now_ms)]
        for key in expired:
            del self._entries[key]
