"""
Job search over the upstream feed.

``JobSearch.search`` picks how to answer a query:

1. A cached result list for the same normalized query, if one is fresh.
2. A server-side filtered query against the feed. It is fast but the feed
   caps filtered results at ``row_cap`` rows without saying so, so the
   result is only trusted when it is non-empty and smaller than the cap.
3. A scan of the full cached dataset. The first call after expiry pays for
   a full ingestion, but the result is complete.

Whatever the source, results are deduplicated, sorted, cached, paginated,
flagged with the requester's saved status and text-normalized.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set

from .cache import DatasetCache, QueryResultCache, dedupe_by_id
from .fetchers import UpstreamClient, UpstreamError, build_where_clause, is_suspect_truncated
from .models import (
    DEFAULT_SORT,
    TEXT_FIELDS,
    SearchQuery,
    UpstreamJobRecord,
    fold_text,
    parse_date,
    parse_number,
)
from .text import normalize

logger = logging.getLogger(__name__)

STRATEGY_CACHE = "cache"
STRATEGY_REMOTE = "remote"
STRATEGY_LOCAL = "local"

_EPOCH = datetime.min

FREE_TEXT_COLUMNS = ("business_title", "job_description", "civil_service_title")
LOCATION_COLUMNS = ("work_location", "work_location_1")


class SavedJobLookup(Protocol):
    def saved_job_ids(self, user_id: int, job_ids: Iterable[str]) -> Set[str]:
        ...


@dataclass
class SearchResult:
    records: List[Dict[str, Any]]
    total: int
    strategy: str


def matches(record: UpstreamJobRecord, query: SearchQuery) -> bool:
    """Evaluate the query's filters against one record in process.

    Text is compared case-folded with inner whitespace collapsed, the same
    way ``SearchQuery.build`` folds the filters: substring match for free
    text and location, exact match on the cleaned category, numeric salary
    bounds. Records without a parseable salary never satisfy a salary
    bound. ``build_where_clause`` selects a superset of these records.
    """
    if query.q and not any(query.q in fold_text(record.get(col)) for col in FREE_TEXT_COLUMNS):
        return False
    if query.category and fold_text(normalize(record.get("job_category"))) != query.category:
        return False
    if query.location and not any(
        query.location in fold_text(record.get(col)) for col in LOCATION_COLUMNS
    ):
        return False
    if query.salary_min is not None:
        low = parse_number(record.get("salary_range_from"))
        if low is None or low < query.salary_min:
            return False
    if query.salary_max is not None:
        high = parse_number(record.get("salary_range_to"))
        if high is None or high > query.salary_max:
            return False
    return True


def _date_key(record: UpstreamJobRecord) -> datetime:
    return parse_date(record.get("posting_date")) or _EPOCH


def _title_key(record: UpstreamJobRecord) -> str:
    return str(record.get("business_title") or "").casefold()


def _salary_key(record: UpstreamJobRecord) -> float:
    return parse_number(record.get("salary_range_from")) or 0.0


SORT_KEYS: Dict[str, Callable[[UpstreamJobRecord], Any]] = {
    "date": _date_key,
    "title": _title_key,
    "salary": _salary_key,
}


def sort_records(records: List[UpstreamJobRecord], sort: str = DEFAULT_SORT) -> List[UpstreamJobRecord]:
    """Return a stably sorted copy of ``records``.

    Missing or unparseable keys sort as the zero value of their type: first
    for ascending orders, last for descending ones.
    """
    field_name, _, direction = sort.partition("_")
    key = SORT_KEYS[field_name]
    return sorted(records, key=key, reverse=direction == "desc")


def normalize_record(record: UpstreamJobRecord) -> Dict[str, Any]:
    """Return a copy of the record with every free-text field cleaned."""
    cleaned = dict(record)
    for name in TEXT_FIELDS:
        if name in cleaned:
            cleaned[name] = normalize(cleaned[name])
    return cleaned


class JobSearch:
    """Search strategy selector.

    Args:
        client: Upstream client for server-side filtered queries.
        dataset: Full-dataset cache for local scans.
        results: Cache of computed result lists.
        row_cap: Row cap the feed applies to filtered queries.
        saved_store: Collaborator store answering saved-status lookups.
    """

    def __init__(
        self,
        client: UpstreamClient,
        dataset: DatasetCache,
        results: QueryResultCache,
        row_cap: int = 1000,
        saved_store: Optional[SavedJobLookup] = None,
    ) -> None:
        self.client = client
        self.dataset = dataset
        self.results = results
        self.row_cap = row_cap
        self.saved_store = saved_store

    def _remote_search(self, query: SearchQuery) -> Optional[List[UpstreamJobRecord]]:
        where = build_where_clause(query)
        if where is None:
            return None
        if not where.isascii():
            # LOWER() on the feed is not a case fold outside ASCII
            logger.info("Query text is not ASCII, scanning full dataset")
            return None
        try:
            records = self.client.fetch_filtered(where, limit=self.row_cap)
        except UpstreamError as exc:
            logger.info("Filtered upstream query failed, scanning full dataset: %s", exc)
            return None
        if not records:
            logger.info("Filtered upstream query returned nothing, scanning full dataset")
            return None
        if is_suspect_truncated(len(records), self.row_cap):
            logger.info(
                "Filtered upstream query returned %s rows (cap %s), presumed truncated; "
                "scanning full dataset",
                len(records),
                self.row_cap,
            )
            return None
        accepted = [r for r in records if matches(r, query)]
        logger.info(
            "Filtered upstream query returned %s rows, %s match exactly", len(records), len(accepted)
        )
        return accepted

    def _local_search(self, query: SearchQuery) -> List[UpstreamJobRecord]:
        records = self.dataset.get_all()
        if not query.has_filters:
            return sort_records(records, "date_desc")
        return [r for r in records if matches(r, query)]

    def compute(self, query: SearchQuery) -> tuple[List[UpstreamJobRecord], str]:
        """Return the full deduplicated, sorted result list and the strategy used."""
        cached = self.results.get(query)
        if cached is not None:
            return cached, STRATEGY_CACHE

        strategy = STRATEGY_LOCAL
        records: Optional[List[UpstreamJobRecord]] = None
        if query.has_filters:
            records = self._remote_search(query)
            if records is not None:
                strategy = STRATEGY_REMOTE
        if records is None:
            records = self._local_search(query)

        records = sort_records(dedupe_by_id(records), query.sort)
        self.results.put(query, records)
        return records, strategy

    def _saved_ids(self, requester_id: Optional[int], job_ids: List[str]) -> Set[str]:
        if requester_id is None or self.saved_store is None or not job_ids:
            return set()
        try:
            return self.saved_store.saved_job_ids(requester_id, job_ids)
        except sqlite3.Error as exc:
            logger.warning("Saved-status lookup failed, reporting jobs as unsaved: %s", exc)
            return set()

    def search(
        self,
        query: SearchQuery,
        page: int = 1,
        page_size: int = 20,
        requester_id: Optional[int] = None,
    ) -> SearchResult:
        """Run a search and return one page of results plus the total count."""
        page = max(1, page)
        records, strategy = self.compute(query)

        start = (page - 1) * page_size
        page_records = records[start : start + page_size]

        job_ids = [str(r["job_id"]) for r in page_records if r.get("job_id") is not None]
        saved = self._saved_ids(requester_id, job_ids)

        output = []
        for record in page_records:
            item = normalize_record(record)
            item["is_saved"] = str(record.get("job_id")) in saved
            output.append(item)

        return SearchResult(records=output, total=len(records), strategy=strategy)

    def categories(self) -> List[str]:
        """Sorted distinct job categories across the full dataset."""
        values = {
            normalize(str(r["job_category"]))
            for r in self.dataset.get_all()
            if r.get("job_category")
        }
        return sorted(v for v in values if v)
