"""
Pydantic schemas for API request/response models.

These schemas define the structure of data sent to and received from
the API endpoints, providing validation and serialization.
"""

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from job_board.models import DEFAULT_SORT, SORT_ORDERS, SearchQuery

_INTEGER_RE = re.compile(r"-?\d+")


# ============================================================================
# Search Schemas
# ============================================================================

class SearchParams(BaseModel):
    """Validated query-string parameters of a job search."""
    q: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)
    sort: str = DEFAULT_SORT

    @field_validator("salary_min", "salary_max", mode="before")
    @classmethod
    def parse_salary(cls, value: Any) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        text = str(value).strip()
        if not text:
            return None
        if not _INTEGER_RE.fullmatch(text):
            raise ValueError("must be an integer")
        return int(text)

    @field_validator("sort", mode="before")
    @classmethod
    def check_sort(cls, value: Any) -> str:
        text = str(value or DEFAULT_SORT).strip().lower()
        if text not in SORT_ORDERS:
            raise ValueError(f"must be one of: {', '.join(SORT_ORDERS)}")
        return text

    def to_query(self) -> SearchQuery:
        return SearchQuery.build(
            q=self.q,
            category=self.category,
            location=self.location,
            salary_min=self.salary_min,
            salary_max=self.salary_max,
            sort=self.sort,
        )


class FieldError(BaseModel):
    field: str
    message: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int


class SearchResponse(BaseModel):
    """Search results keep the upstream record shape plus ``is_saved``."""
    jobs: List[Dict[str, Any]]
    pagination: Pagination


class CategoriesResponse(BaseModel):
    categories: List[str]


# ============================================================================
# Job Schemas
# ============================================================================

class JobDetailResponse(BaseModel):
    """Canonical job with cleaned text and the requester's saved flag."""
    job_id: str
    business_title: Optional[str] = None
    civil_service_title: Optional[str] = None
    title_code_no: Optional[str] = None
    level: Optional[str] = None
    job_category: Optional[str] = None
    full_time_part_time_indicator: Optional[str] = None
    salary_range_from: Optional[float] = None
    salary_range_to: Optional[float] = None
    salary_frequency: Optional[str] = None
    work_location: Optional[str] = None
    work_location_1: Optional[str] = None
    division_work_unit: Optional[str] = None
    job_description: Optional[str] = None
    minimum_qual_requirements: Optional[str] = None
    preferred_skills: Optional[str] = None
    additional_information: Optional[str] = None
    to_apply: Optional[str] = None
    hours_shift: Optional[str] = None
    residency_requirement: Optional[str] = None
    post_date: Optional[str] = None
    posting_updated: Optional[str] = None
    process_date: Optional[str] = None
    post_until: Optional[str] = None
    agency: Optional[str] = None
    posting_type: Optional[str] = None
    number_of_positions: Optional[str] = None
    title_classification: Optional[str] = None
    career_level: Optional[str] = None
    is_saved: bool = False


class SavedJobItem(BaseModel):
    saved_id: int
    saved_at: str
    job: JobDetailResponse


class SavedJobsResponse(BaseModel):
    jobs: List[SavedJobItem]
    total: int
    page: int
    page_size: int
    total_pages: int


class MessageResponse(BaseModel):
    message: str


class CacheHealthResponse(BaseModel):
    status: str
    cache_status: str
    cache_size: int
    cache_age_seconds: Optional[float] = None
    query_cache_entries: int
