"""
Turns raw upstream records into ``CanonicalJob`` objects.

Detail lookups try, in order: the full-dataset cache (only if it is
already warm; a lookup never triggers a full ingestion), the locally
persisted copy of a saved job, and finally a single-record upstream fetch.
The save path persists a job the first time anybody saves it, fetching just
that one record from the feed.
"""

from __future__ import annotations

import logging
from typing import Optional

from .cache import DatasetCache
from .db import Database
from .fetchers import UpstreamClient
from .models import CanonicalJob, UpstreamJobRecord, parse_number
from .text import format_description, normalize

logger = logging.getLogger(__name__)


class JobNotFound(LookupError):
    """No job with the requested identifier exists in the cache, the store or the feed."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


def materialize(record: UpstreamJobRecord) -> CanonicalJob:
    """Build the canonical, display-ready job from one upstream record."""
    return CanonicalJob(
        job_id=str(record["job_id"]),
        business_title=normalize(record.get("business_title")),
        civil_service_title=normalize(record.get("civil_service_title")),
        title_code_no=record.get("title_code_no"),
        level=record.get("level"),
        job_category=normalize(record.get("job_category")),
        full_time_part_time_indicator=record.get("full_time_part_time_indicator"),
        salary_range_from=parse_number(record.get("salary_range_from")),
        salary_range_to=parse_number(record.get("salary_range_to")),
        salary_frequency=record.get("salary_frequency"),
        work_location=normalize(record.get("work_location")),
        work_location_1=normalize(record.get("work_location_1")),
        division_work_unit=normalize(record.get("division_work_unit")),
        job_description=format_description(record.get("job_description")),
        minimum_qual_requirements=normalize(record.get("minimum_qual_requirements")),
        preferred_skills=normalize(record.get("preferred_skills")),
        additional_information=normalize(record.get("additional_information")),
        to_apply=normalize(record.get("to_apply")),
        hours_shift=normalize(record.get("hours_shift")),
        residency_requirement=normalize(record.get("residency_requirement")),
        post_date=record.get("posting_date"),
        posting_updated=record.get("posting_updated"),
        process_date=record.get("process_date"),
        post_until=record.get("post_until"),
        agency=normalize(record.get("agency")),
        posting_type=record.get("posting_type"),
        number_of_positions=record.get("number_of_positions"),
        title_classification=normalize(record.get("title_classification")),
        career_level=normalize(record.get("career_level")),
    )


class JobMaterializer:
    """Detail lookups and the save/unsave write path.

    Args:
        client: Upstream client for single-record fetches.
        dataset: Full-dataset cache, consulted only while warm.
        db: Collaborator store holding persisted jobs and bookmarks.
    """

    def __init__(self, client: UpstreamClient, dataset: DatasetCache, db: Database) -> None:
        self.client = client
        self.dataset = dataset
        self.db = db

    def _lookup(self, job_id: str) -> Optional[CanonicalJob]:
        record = self.dataset.find(job_id)
        if record is not None:
            return materialize(record)

        document = self.db.get_job_document(job_id)
        if document is not None:
            return CanonicalJob.from_dict(document)

        record = self.client.fetch_by_id(job_id)
        if record is not None:
            return materialize(record)
        return None

    def get_by_id(self, job_id: str, requester_id: Optional[int] = None) -> CanonicalJob:
        """Return the canonical job with the requester's saved flag.

        Raises:
            JobNotFound: If no source knows the job.
            UpstreamError: If the single-record upstream fetch fails.
        """
        job = self._lookup(job_id)
        if job is None:
            raise JobNotFound(job_id)
        if requester_id is not None:
            job.is_saved = self.db.is_saved(requester_id, job_id)
        return job

    def upsert_from_upstream(self, job_id: str) -> CanonicalJob:
        """Fetch one job from the feed and persist it.

        Raises:
            JobNotFound: If the feed has no such job.
            UpstreamError: If the fetch fails.
        """
        record = self.client.fetch_by_id(job_id)
        if record is None:
            raise JobNotFound(job_id)
        job = materialize(record)
        self.db.upsert_job_document(job.job_id, job.to_document())
        logger.info("Stored job %s from upstream", job.job_id)
        return job

    def save(self, job_id: str, user_id: int) -> bool:
        """Bookmark a job for a user, persisting the job first if needed.

        Returns:
            True if a new bookmark was created, False if it already existed.
        """
        if self.db.get_job_document(job_id) is None:
            self.upsert_from_upstream(job_id)
        return self.db.insert_saved_job(user_id, job_id) is not None

    def unsave(self, job_id: str, user_id: int) -> bool:
        return self.db.delete_saved_job(user_id, job_id)
