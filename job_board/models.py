"""
Data models for the job board.

Upstream records are kept as the flat dictionaries the feed returns; this
module only names their fields. ``CanonicalJob`` is the cleaned,
display-ready shape returned by detail lookups and persisted by the save
path. ``SearchQuery`` is the normalized, hashable set of search filters that
keys the query result cache.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Any, Dict, Optional

# An upstream record is a flat JSON object of strings
UpstreamJobRecord = Dict[str, Any]

SORT_ORDERS = (
    "date_desc",
    "date_asc",
    "title_asc",
    "title_desc",
    "salary_asc",
    "salary_desc",
)
DEFAULT_SORT = "date_desc"

# Fields of an upstream record that hold human-readable text
TEXT_FIELDS = (
    "agency",
    "business_title",
    "civil_service_title",
    "title_classification",
    "job_category",
    "career_level",
    "work_location",
    "work_location_1",
    "division_work_unit",
    "job_description",
    "minimum_qual_requirements",
    "preferred_skills",
    "additional_information",
    "to_apply",
    "hours_shift",
    "residency_requirement",
    "recruitment_contact",
)


def parse_number(value: Any) -> Optional[float]:
    """Parse a salary-like value ("65000", "65000.00", 65000) or return None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(",", "").lstrip("$")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a feed timestamp such as ``2024-01-05T00:00:00.000``.

    Timezone information is dropped so all parsed values compare with each
    other. Returns None when the value is missing or unparseable.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        # Older interpreters reject fractional seconds that are not 3 or 6 digits
        try:
            parsed = datetime.fromisoformat(text[:19])
        except ValueError:
            return None
    return parsed.replace(tzinfo=None)


@dataclass
class CanonicalJob:
    """A single job posting in the shape the API exposes.

    Attributes mirror the feed's fields with cleaned text. Salary bounds are
    numbers when the feed value was parseable. ``is_saved`` is computed per
    requester and is never persisted.
    """

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

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_document(self) -> Dict[str, Any]:
        """Serialize for persistence; per-requester state is left out."""
        data = self.to_dict()
        data.pop("is_saved", None)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalJob":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def fold_text(value: Any) -> str:
    """Case-fold text and collapse inner whitespace, for comparisons."""
    if value is None:
        return ""
    return " ".join(str(value).split()).casefold()


def _clean(value: Optional[str]) -> Optional[str]:
    return fold_text(value) or None


@dataclass(frozen=True)
class SearchQuery:
    """Normalized search filters.

    Build instances with ``SearchQuery.build`` so that text is trimmed and
    case-folded and blanks become None; two semantically identical queries
    are then equal, hash equal, and share a ``cache_key``.
    """

    q: Optional[str] = None
    category: Optional[str] = None
    location: Optional[str] = None
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    sort: str = DEFAULT_SORT

    @classmethod
    def build(
        cls,
        q: Optional[str] = None,
        category: Optional[str] = None,
        location: Optional[str] = None,
        salary_min: Optional[int] = None,
        salary_max: Optional[int] = None,
        sort: Optional[str] = None,
    ) -> "SearchQuery":
        sort_value = (sort or DEFAULT_SORT).strip().lower()
        if sort_value not in SORT_ORDERS:
            raise ValueError(f"Unknown sort order: {sort}")
        return cls(
            q=_clean(q),
            category=_clean(category),
            location=_clean(location),
            salary_min=salary_min,
            salary_max=salary_max,
            sort=sort_value,
        )

    @property
    def has_filters(self) -> bool:
        return any(
            value is not None
            for value in (self.q, self.category, self.location, self.salary_min, self.salary_max)
        )

    def cache_key(self) -> str:
        """Return a stable digest of the query for cache lookups."""
        payload = json.dumps(asdict(self), sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]
