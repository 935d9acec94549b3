"""
Database layer for the job board.

This module defines the SQLite schema for the data the job board owns:
session tokens that identify a requester, jobs that users have saved
(stored as JSON documents so the upstream shape can evolve freely), and
the saved-job bookmarks linking the two. Upstream job data itself is never
stored here except for jobs somebody saved.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set


SCHEMA = """
CREATE TABLE IF NOT EXISTS user_sessions (
    session_id TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL,
    created_at TIMESTAMP NOT NULL,
    expires_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS saved_jobs (
    saved_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    job_id TEXT NOT NULL,
    saved_at TIMESTAMP NOT NULL,
    UNIQUE(user_id, job_id),
    FOREIGN KEY(job_id) REFERENCES jobs(job_id)
);

CREATE INDEX IF NOT EXISTS idx_saved_jobs_user ON saved_jobs(user_id, saved_at);
"""


class Database:
    """Wrapper around sqlite3 connection.

    Provides helper methods for common operations and ensures the
    connection uses row_factory for named access. The connection may be
    handed to a worker thread, so same-thread checking is disabled; each
    request still gets its own ``Database``.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    def _ensure_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # --- session operations ---
    def insert_session(
        self, session_id: str, user_id: int, created_at: datetime, expires_at: datetime
    ) -> None:
        cur = self.conn.cursor()
        cur.execute(
            "INSERT INTO user_sessions (session_id, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
            (session_id, user_id, created_at.isoformat(), expires_at.isoformat()),
        )
        self.conn.commit()

    def get_session(self, session_id: str) -> Optional[sqlite3.Row]:
        cur = self.conn.cursor()
        cur.execute(
            "SELECT user_id, expires_at FROM user_sessions WHERE session_id = ?",
            (session_id,),
        )
        return cur.fetchone()

    # --- job document operations ---
    def get_job_document(self, job_id: str) -> Optional[Dict[str, Any]]:
        cur = self.conn.cursor()
        cur.execute("SELECT data FROM jobs WHERE job_id = ?", (job_id,))
        row = cur.fetchone()
        if row is None:
            return None
        return json.loads(row["data"])

    def upsert_job_document(self, job_id: str, document: Dict[str, Any]) -> None:
        """Insert or replace the stored copy of a job."""
        now = datetime.now().isoformat()
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO jobs (job_id, data, created_at, updated_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(job_id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
            """,
            (job_id, json.dumps(document, ensure_ascii=False), now, now),
        )
        self.conn.commit()

    # --- saved job operations ---
    def saved_job_ids(self, user_id: int, job_ids: Iterable[str]) -> Set[str]:
        """Return the subset of ``job_ids`` the user has saved."""
        ids = [str(j) for j in job_ids]
        if not ids:
            return set()
        placeholders = ",".join("?" for _ in ids)
        cur = self.conn.cursor()
        cur.execute(
            f"SELECT job_id FROM saved_jobs WHERE user_id = ? AND job_id IN ({placeholders})",
            (user_id, *ids),
        )
        return {row["job_id"] for row in cur.fetchall()}

    def is_saved(self, user_id: int, job_id: str) -> bool:
        return bool(self.saved_job_ids(user_id, [job_id]))

    def insert_saved_job(self, user_id: int, job_id: str) -> Optional[int]:
        """Bookmark a job for a user.

        Returns:
            The new saved_id, or None if the user had already saved the job.
        """
        cur = self.conn.cursor()
        cur.execute(
            "INSERT OR IGNORE INTO saved_jobs (user_id, job_id, saved_at) VALUES (?, ?, ?)",
            (user_id, job_id, datetime.now().isoformat()),
        )
        self.conn.commit()
        if cur.rowcount == 0:
            return None
        return int(cur.lastrowid)

    def delete_saved_job(self, user_id: int, job_id: str) -> bool:
        cur = self.conn.cursor()
        cur.execute(
            "DELETE FROM saved_jobs WHERE user_id = ? AND job_id = ?",
            (user_id, job_id),
        )
        self.conn.commit()
        return cur.rowcount > 0

    def count_saved_jobs(self, user_id: int) -> int:
        cur = self.conn.cursor()
        cur.execute("SELECT COUNT(*) AS total FROM saved_jobs WHERE user_id = ?", (user_id,))
        return int(cur.fetchone()["total"])

    def list_saved_jobs(self, user_id: int, limit: int, offset: int) -> List[Dict[str, Any]]:
        """Return the user's saved jobs, newest first, with their stored documents."""
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT sj.saved_id, sj.saved_at, sj.job_id, j.data
            FROM saved_jobs sj
            JOIN jobs j ON j.job_id = sj.job_id
            WHERE sj.user_id = ?
            ORDER BY sj.saved_at DESC, sj.saved_id DESC
            LIMIT ? OFFSET ?
            """,
            (user_id, limit, offset),
        )
        return [
            {
                "saved_id": row["saved_id"],
                "saved_at": row["saved_at"],
                "job_id": row["job_id"],
                "job": json.loads(row["data"]),
            }
            for row in cur.fetchall()
        ]


class SavedJobIndex:
    """Saved-status lookups that open the store only when asked.

    Search handles anonymous requests without touching SQLite at all, and
    a store that cannot be opened surfaces as ``sqlite3.Error`` from
    ``saved_job_ids`` where the caller can degrade.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path

    def saved_job_ids(self, user_id: int, job_ids: Iterable[str]) -> Set[str]:
        with Database(self.db_path) as db:
            return db.saved_job_ids(user_id, job_ids)
