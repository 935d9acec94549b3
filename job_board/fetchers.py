"""
Client for the upstream open-data jobs feed.

The feed is a Socrata-style endpoint: ``GET <url>?$limit=&$offset=`` returns
a JSON array of flat records, and an optional ``$where`` parameter filters
server-side. Filtered queries are capped at an undocumented row limit and
truncate silently, so a filtered result is only advisory; see
``is_suspect_truncated``.

``UpstreamClient`` is the only code in the project that talks to the
network. Batch fetches used to ingest the full dataset retry transient
failures with exponential backoff and degrade to an empty batch when
retries run out. Filtered and single-record fetches make one attempt and
raise ``UpstreamError`` so callers can decide what to do.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .models import SearchQuery, UpstreamJobRecord

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; job-board/1.0)"


class UpstreamError(Exception):
    """Base class for failures talking to the jobs feed."""

    transient = False


class UpstreamTimeout(UpstreamError):
    """The request timed out or the connection failed."""

    transient = True


class UpstreamHTTPError(UpstreamError):
    """The feed answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str = "") -> None:
        super().__init__(message or f"Upstream returned HTTP {status_code}")
        self.status_code = status_code

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return self.status_code >= 500 or self.status_code == 429


class UpstreamPayloadError(UpstreamError):
    """The feed answered 2xx with something other than a JSON array."""


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and exc.transient


def is_suspect_truncated(count: int, cap: int) -> bool:
    """Return True when a filtered result hit the feed's row cap.

    The feed gives no signal when it truncates a filtered query; a result
    exactly the size of the cap is the only evidence.
    """
    return cap > 0 and count >= cap


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _pattern(term: str) -> str:
    # Words joined by % so runs of whitespace in the record still match
    return "%".join(term.lower().split())


def _like(column: str, term: str) -> str:
    return f"LOWER({column}) LIKE {_quote('%' + _pattern(term) + '%')}"


def build_where_clause(query: SearchQuery) -> Optional[str]:
    """Translate a search query into a SoQL ``$where`` expression.

    The expression selects a superset of the records ``search.matches``
    accepts: ``_`` and ``%`` in user text act as wildcards, inner
    whitespace is relaxed and categories use the same contains pattern as
    free text. Callers re-check each returned record in process.

    Returns None when the query carries no filters.
    """
    conditions: List[str] = []
    if query.q:
        conditions.append(
            "("
            + " OR ".join(
                _like(col, query.q)
                for col in ("business_title", "job_description", "civil_service_title")
            )
            + ")"
        )
    if query.category:
        conditions.append(_like("job_category", query.category))
    if query.location:
        conditions.append(
            f"({_like('work_location', query.location)} OR {_like('work_location_1', query.location)})"
        )
    if query.salary_min is not None:
        conditions.append(
            f"(salary_range_from IS NOT NULL AND salary_range_from >= {int(query.salary_min)})"
        )
    if query.salary_max is not None:
        conditions.append(
            f"(salary_range_to IS NOT NULL AND salary_range_to <= {int(query.salary_max)})"
        )
    if not conditions:
        return None
    return " AND ".join(conditions)


class UpstreamClient:
    """HTTP client for the jobs feed.

    Args:
        base_url: Dataset endpoint, e.g. ``https://data.cityofnewyork.us/resource/kpav-sd4t.json``.
        session: Optional ``requests.Session``; one is created if omitted.
        max_attempts: Attempts per batch fetch before giving up.
        backoff_seconds: Delay before the second attempt; doubles each time.
        batch_timeout: Timeout in seconds for batch and filtered fetches.
        record_timeout: Timeout in seconds for single-record fetches.
        sleep: Sleep function used between retries.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        batch_timeout: float = 30,
        record_timeout: float = 10,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.batch_timeout = batch_timeout
        self.record_timeout = record_timeout
        self._sleep = sleep

    def _get(self, params: Dict[str, Any], timeout: float) -> List[UpstreamJobRecord]:
        try:
            resp = self.session.get(self.base_url, params=params, timeout=timeout)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise UpstreamTimeout(str(exc)) from exc
        except requests.RequestException as exc:
            raise UpstreamError(str(exc)) from exc

        if resp.status_code >= 400:
            raise UpstreamHTTPError(resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamPayloadError("Upstream response is not JSON") from exc
        if not isinstance(data, list):
            raise UpstreamPayloadError(
                f"Expected a JSON array from upstream, got {type(data).__name__}"
            )
        return data

    def fetch_batch(
        self, offset: int, limit: int, where: Optional[str] = None
    ) -> List[UpstreamJobRecord]:
        """Fetch one page of the dataset, retrying transient failures.

        Returns:
            The records of the page. An empty list means end of data, a
            non-retryable failure, or exhausted retries; failures are logged.
        """
        params: Dict[str, Any] = {"$limit": limit, "$offset": offset}
        if where:
            params["$where"] = where

        retrying = Retrying(
            # backoff, then 2x backoff, 4x backoff ...
            wait=wait_exponential(multiplier=self.backoff_seconds),
            stop=stop_after_attempt(self.max_attempts),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return retrying(self._get, params, timeout=self.batch_timeout)
        except UpstreamError as exc:
            logger.error("Upstream batch at offset %s failed, giving up: %s", offset, exc)
            return []

    def fetch_filtered(self, where: str, limit: int) -> List[UpstreamJobRecord]:
        """Run a single server-side filtered query.

        Raises:
            UpstreamError: On any failure; no retry is attempted.
        """
        return self._get({"$limit": limit, "$where": where}, timeout=self.batch_timeout)

    def fetch_by_id(self, job_id: str) -> Optional[UpstreamJobRecord]:
        """Fetch a single record by its identifier.

        Returns:
            The record, or None if the feed has no such job.

        Raises:
            UpstreamError: If the request fails.
        """
        records = self._get({"job_id": job_id, "$limit": 1}, timeout=self.record_timeout)
        return records[0] if records else None
