"""
Shared dependencies for FastAPI routes.

Provides the per-request database connection, requester identity, and the
search/detail services wired to the process-wide caches that
``create_app`` stores on ``app.state``.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Iterator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from job_board.db import Database, SavedJobIndex
from job_board.materializer import JobMaterializer
from job_board.search import JobSearch

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_db(request: Request) -> Iterator[Database]:
    """Dependency to get database connection.

    Opens the database configured in ``Settings.db_path`` and closes it
    once the response has been sent.
    """
    db = Database(Path(request.app.state.settings.db_path))
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> int | None:
    """Get current user from session token.

    Returns the user_id if a valid session token is provided, otherwise None.
    This allows for optional authentication - endpoints can choose to require
    authentication or work without it. The session store is only opened
    when a token is sent.

    Raises:
        HTTPException: If token is provided but invalid or expired, or the
            session store cannot be read.
    """
    if credentials is None:
        return None

    try:
        with Database(Path(request.app.state.settings.db_path)) as db:
            row = db.get_session(credentials.credentials)
    except sqlite3.Error as exc:
        logger.error("Session lookup failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session store unavailable"
        )

    if not row:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session"
        )

    if datetime.fromisoformat(row["expires_at"]) < datetime.now():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired"
        )

    return int(row["user_id"])


def require_auth(
    user_id: int | None = Depends(get_current_user)
) -> int:
    """Require authentication - raises 401 if user is not authenticated."""
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )
    return user_id


def get_job_search(request: Request) -> JobSearch:
    state = request.app.state
    return JobSearch(
        client=state.upstream,
        dataset=state.dataset_cache,
        results=state.query_cache,
        row_cap=state.settings.filter_row_cap,
        saved_store=SavedJobIndex(Path(state.settings.db_path)),
    )


def get_materializer(request: Request, db: Database = Depends(get_db)) -> JobMaterializer:
    state = request.app.state
    return JobMaterializer(client=state.upstream, dataset=state.dataset_cache, db=db)
