from __future__ import annotations

import secrets
import threading
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from job_board.db import Database


class ManualClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)


class FakeUpstream:
    """Stand-in for UpstreamClient that serves records from memory and counts calls."""

    def __init__(
        self,
        records: list[dict[str, Any]] | None = None,
        filtered: list[dict[str, Any]] | None = None,
        filtered_error: Exception | None = None,
        by_id: dict[str, dict[str, Any]] | None = None,
        by_id_error: Exception | None = None,
    ) -> None:
        self.records = list(records or [])
        self.filtered = filtered
        self.filtered_error = filtered_error
        self.by_id = dict(by_id or {})
        self.by_id_error = by_id_error
        self.batch_delay = 0.0
        self.batch_calls: list[tuple[int, int]] = []
        self.filtered_calls: list[str] = []
        self.by_id_calls: list[str] = []
        self._lock = threading.Lock()

    def fetch_batch(self, offset: int, limit: int, where: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            self.batch_calls.append((offset, limit))
        if self.batch_delay:
            time.sleep(self.batch_delay)
        return self.records[offset : offset + limit]

    def fetch_filtered(self, where: str, limit: int) -> list[dict[str, Any]]:
        self.filtered_calls.append(where)
        if self.filtered_error is not None:
            raise self.filtered_error
        return list(self.filtered or [])[:limit]

    def fetch_by_id(self, job_id: str) -> dict[str, Any] | None:
        self.by_id_calls.append(job_id)
        if self.by_id_error is not None:
            raise self.by_id_error
        if job_id in self.by_id:
            return self.by_id[job_id]
        return next((r for r in self.records if r.get("job_id") == job_id), None)

    @property
    def ingestions(self) -> int:
        return sum(1 for offset, _ in self.batch_calls if offset == 0)


def issue_session(db_path: Path, user_id: int, days: int = 30) -> str:
    """Insert a session row the way the login service does and return its token."""
    token = secrets.token_urlsafe(32)
    now = datetime.now()
    with Database(db_path) as db:
        db.insert_session(token, user_id, created_at=now, expires_at=now + timedelta(days=days))
    return token


def make_job(
    job_id: str,
    title: str = "Clerical Associate",
    posting_date: str | None = "2024-01-01T00:00:00.000",
    salary_from: str | None = "50000",
    salary_to: str | None = "60000",
    category: str | None = "Administration & Human Resources",
    location: str | None = "100 Gold St., New York, N.Y.",
    description: str | None = "Performs clerical duties.",
    **extra: Any,
) -> dict[str, Any]:
    record: dict[str, Any] = {
        "job_id": job_id,
        "agency": "DEPT OF FINANCE",
        "business_title": title,
        "civil_service_title": title.upper(),
        "job_category": category,
        "work_location": location,
        "job_description": description,
        "salary_range_from": salary_from,
        "salary_range_to": salary_to,
        "salary_frequency": "Annual",
        "posting_date": posting_date,
    }
    record.update(extra)
    return {k: v for k, v in record.items() if v is not None}


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "job_board.sqlite3"


@pytest.fixture
def db(db_path: Path):
    with Database(db_path) as database:
        yield database
