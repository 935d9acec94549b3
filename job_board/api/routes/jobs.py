"""
Job search and management API endpoints.

Provides endpoints for searching the upstream jobs feed, listing
categories, viewing job details, and saving jobs for the authenticated
user. Work that may block on the feed or the database runs in the thread
pool.
"""

import logging
import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from job_board.api.dependencies import (
    get_current_user,
    get_db,
    get_job_search,
    get_materializer,
    require_auth,
)
from job_board.api.schemas import (
    CacheHealthResponse,
    CategoriesResponse,
    JobDetailResponse,
    MessageResponse,
    Pagination,
    SavedJobsResponse,
    SearchParams,
    SearchResponse,
)
from job_board.db import Database
from job_board.fetchers import UpstreamError
from job_board.materializer import JobMaterializer, JobNotFound
from job_board.search import JobSearch

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def _validation_detail(exc: ValidationError) -> dict:
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "query"
        message = err["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.append({"field": field, "message": message})
    return {"message": "Validation failed", "errors": errors}


@router.get("/search", response_model=SearchResponse)
async def search_jobs(
    q: Optional[str] = Query(None, description="Search keywords in title and description"),
    category: Optional[str] = Query(None, description="Exact job category"),
    location: Optional[str] = Query(None, description="Filter by work location (partial match)"),
    salary_min: Optional[str] = Query(None, description="Minimum salary (integer)"),
    salary_max: Optional[str] = Query(None, description="Maximum salary (integer)"),
    page: Optional[str] = Query(None, description="Page number"),
    limit: Optional[str] = Query(None, description="Items per page"),
    sort: Optional[str] = Query(None, description="date_desc, date_asc, title_asc, title_desc, salary_asc or salary_desc"),
    user_id: Optional[int] = Depends(get_current_user),
    search: JobSearch = Depends(get_job_search),
):
    """
    Search jobs with filtering, sorting and pagination.

    Parameters are validated before any cache or upstream work; invalid
    values are reported per field with a 400.
    """
    raw = {
        "q": q,
        "category": category,
        "location": location,
        "salary_min": salary_min,
        "salary_max": salary_max,
        "page": page,
        "limit": limit,
        "sort": sort,
    }
    try:
        params = SearchParams.model_validate(
            {k: v for k, v in raw.items() if v is not None and v.strip() != ""}
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=_validation_detail(exc)
        )

    result = await run_in_threadpool(
        search.search, params.to_query(), params.page, params.limit, user_id
    )
    return SearchResponse(
        jobs=result.records,
        pagination=Pagination(page=params.page, limit=params.limit, total=result.total),
    )


@router.get("/categories", response_model=CategoriesResponse)
async def get_categories(search: JobSearch = Depends(get_job_search)):
    """Distinct job categories across the full dataset, sorted."""
    categories = await run_in_threadpool(search.categories)
    return CategoriesResponse(categories=categories)


@router.get("/health", response_model=CacheHealthResponse)
async def jobs_health(request: Request):
    """Report the state of the dataset and query caches."""
    dataset_status = request.app.state.dataset_cache.status()
    return CacheHealthResponse(
        status="ok",
        cache_status="cached" if dataset_status["cached"] else "not cached",
        cache_size=dataset_status["size"],
        cache_age_seconds=dataset_status["age_seconds"],
        query_cache_entries=len(request.app.state.query_cache),
    )


@router.get("/saved/list", response_model=SavedJobsResponse)
async def get_saved_jobs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    user_id: int = Depends(require_auth),
    db: Database = Depends(get_db)
):
    """
    Get list of saved jobs for the authenticated user, newest first.
    """
    total = db.count_saved_jobs(user_id)
    offset = (page - 1) * page_size
    rows = db.list_saved_jobs(user_id, limit=page_size, offset=offset)

    jobs = []
    for row in rows:
        jobs.append({
            "saved_id": row["saved_id"],
            "saved_at": row["saved_at"],
            "job": {**row["job"], "is_saved": True},
        })

    return {
        "jobs": jobs,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size if page_size > 0 else 0
    }


@router.get("/{job_id}", response_model=JobDetailResponse)
async def get_job(
    job_id: str,
    user_id: Optional[int] = Depends(get_current_user),
    materializer: JobMaterializer = Depends(get_materializer)
):
    """
    Get detailed information about a specific job.

    Served from the warm dataset cache, the stored copy of a saved job, or a
    single-record fetch from the feed, in that order.
    """
    try:
        job = await run_in_threadpool(materializer.get_by_id, job_id, user_id)
    except JobNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )
    except UpstreamError as exc:
        logger.error("Upstream lookup of job %s failed: %s", job_id, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Jobs feed is unavailable"
        )
    return job.to_dict()


@router.post("/{job_id}/save", response_model=MessageResponse)
async def save_job(
    job_id: str,
    user_id: int = Depends(require_auth),
    materializer: JobMaterializer = Depends(get_materializer)
):
    """
    Save a job for the authenticated user.

    Jobs nobody has saved before are fetched from the feed and stored first.
    """
    try:
        created = await run_in_threadpool(materializer.save, job_id, user_id)
    except JobNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )
    except UpstreamError as exc:
        logger.error("Upstream fetch of job %s for save failed: %s", job_id, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Jobs feed is unavailable"
        )
    except sqlite3.Error as exc:
        logger.error("Saving job %s for user %s failed: %s", job_id, user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not save job"
        )

    if not created:
        return {"message": "Job already saved"}
    return {"message": "Job saved successfully"}


@router.delete("/{job_id}/save", response_model=MessageResponse)
async def unsave_job(
    job_id: str,
    user_id: int = Depends(require_auth),
    materializer: JobMaterializer = Depends(get_materializer)
):
    """
    Remove a saved job for the authenticated user.
    """
    try:
        removed = await run_in_threadpool(materializer.unsave, job_id, user_id)
    except sqlite3.Error as exc:
        logger.error("Unsaving job %s for user %s failed: %s", job_id, user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not unsave job"
        )

    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Saved job not found"
        )

    return {"message": "Job unsaved successfully"}
