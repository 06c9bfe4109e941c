"""
Scrape job lifecycle tracking.

    pending -> running -> completed | failed
    pending | running -> cancelled

Terminal jobs (completed, failed, cancelled) are never modified again.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .errors import InvalidTransitionError, NotFoundError
from .models import ScrapeJob, ScrapeJobStatus, ScrapeTargetType
from .repositories import ScrapeJobRepository


ALLOWED_TRANSITIONS = {
    ScrapeJobStatus.PENDING: {ScrapeJobStatus.RUNNING, ScrapeJobStatus.CANCELLED},
    ScrapeJobStatus.RUNNING: {ScrapeJobStatus.COMPLETED, ScrapeJobStatus.FAILED,
                              ScrapeJobStatus.CANCELLED},
    ScrapeJobStatus.COMPLETED: set(),
    ScrapeJobStatus.FAILED: set(),
    ScrapeJobStatus.CANCELLED: set(),
}


class JobTracker:
    """Creates scrape jobs and moves them through their states."""

    def __init__(self, conn, clock: Callable[[], datetime] = datetime.now):
        self.conn = conn
        self.clock = clock
        self.jobs = ScrapeJobRepository(conn)

    def create(self, target_url: str, target_type: ScrapeTargetType,
               metadata: Optional[Dict[str, Any]] = None,
               max_retries: int = 3) -> ScrapeJob:
        """Record a new pending job."""
        job = ScrapeJob(
            target_url=target_url,
            target_type=target_type,
            max_retries=max_retries,
            metadata=dict(metadata or {}),
            created_at=self.clock(),
        )
        self.jobs.create(job)
        self.conn.commit()
        return job

    def _transition(self, job: ScrapeJob, target: ScrapeJobStatus, **changes) -> ScrapeJob:
        if target not in ALLOWED_TRANSITIONS[job.status]:
            raise InvalidTransitionError(job.id, job.status.value, target.value)
        previous = {name: getattr(job, name) for name in ('status', *changes)}
        job.status = target
        for name, value in changes.items():
            setattr(job, name, value)
        try:
            self.jobs.save(job)
            self.conn.commit()
        except Exception:
            for name, value in previous.items():
                setattr(job, name, value)
            raise
        return job

    def start(self, job: ScrapeJob) -> ScrapeJob:
        return self._transition(job, ScrapeJobStatus.RUNNING, started_at=self.clock())

    def complete(self, job: ScrapeJob, items_scraped: int) -> ScrapeJob:
        return self._transition(job, ScrapeJobStatus.COMPLETED,
                                items_scraped=items_scraped,
                                finished_at=self.clock())

    def fail(self, job: ScrapeJob, error_log: str) -> ScrapeJob:
        return self._transition(job, ScrapeJobStatus.FAILED,
                                error_log=error_log,
                                finished_at=self.clock())

    def cancel(self, job: ScrapeJob) -> ScrapeJob:
        """Administrative cancel; not used by the orchestrator."""
        return self._transition(job, ScrapeJobStatus.CANCELLED, finished_at=self.clock())

    def get(self, job_id: int) -> Optional[ScrapeJob]:
        return self.jobs.find_by_id(job_id)

    def require(self, job_id: int) -> ScrapeJob:
        """Like get(), but raises NotFoundError for an unknown id."""
        job = self.jobs.find_by_id(job_id)
        if job is None:
            raise NotFoundError("Scrape job", "id", job_id)
        return job

    def recent(self, limit: int = 100) -> List[ScrapeJob]:
        return self.jobs.recent(limit)
