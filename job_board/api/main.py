"""
Main FastAPI application for the job board.

``create_app`` is the composition root: it builds the upstream client and
the process-wide caches once and stores them on ``app.state`` so route
dependencies can hand them to the per-request services. Tests call
``create_app`` with their own settings, client and clock.
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from job_board import __version__
from job_board.cache import Clock, DatasetCache, QueryResultCache, system_clock
from job_board.config import Settings, load_settings
from job_board.fetchers import UpstreamClient

from .routes import jobs


def create_app(
    settings: Optional[Settings] = None,
    upstream: Optional[UpstreamClient] = None,
    clock: Clock = system_clock,
) -> FastAPI:
    settings = settings or load_settings()
    upstream = upstream or UpstreamClient(
        base_url=settings.api_url,
        max_attempts=settings.max_attempts,
        backoff_seconds=settings.backoff_seconds,
        batch_timeout=settings.batch_timeout,
        record_timeout=settings.record_timeout,
    )

    app = FastAPI(
        title="Job Board API",
        description="Search, view and save government job postings",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc"
    )

    app.state.settings = settings
    app.state.upstream = upstream
    app.state.dataset_cache = DatasetCache(
        upstream,
        ttl_seconds=settings.dataset_ttl_seconds,
        batch_size=settings.batch_size,
        max_records=settings.max_records,
        clock=clock,
    )
    app.state.query_cache = QueryResultCache(ttl_seconds=settings.query_ttl_seconds, clock=clock)

    # In development we allow common local origins; in production we
    # expect explicit origins via JOBBOARD_ALLOWED_ORIGINS.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": __version__
        }

    @app.get("/api")
    async def api_info():
        """API information endpoint."""
        return {
            "name": "Job Board API",
            "version": __version__,
            "docs": "/api/docs",
            "health": "/api/health"
        }

    app.include_router(jobs.router)
    return app


app = create_app()
