"""Cooperative cancellation for running jobs."""

from uuid import UUID

import structlog

from app.engines.jobs.models import JobStatus
from app.engines.jobs.repository import JobRepository

logger = structlog.get_logger()


class CancellationToken:
    """Polls the persisted job status at claim points.

    In-flight external calls are never interrupted; lanes check the token
    before claiming more work, so cancellation latency is at most one task
    per lane. Once cancellation is observed the token stays cancelled.
    """

    def __init__(self, repository: JobRepository, job_id: UUID):
        self.repository = repository
        self.job_id = job_id
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def check(self) -> bool:
        """Check if the job has been cancelled."""
        if self._cancelled:
            return True
        job = await self.repository.get(self.job_id)
        if job is not None and job.status == JobStatus.CANCELLED:
            self._cancelled = True
            logger.info("Job was cancelled, stopping workers", job_id=str(self.job_id))
        return self._cancelled
