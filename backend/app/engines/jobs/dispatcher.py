"""Job Dispatcher - serialises job processing for the whole process."""

import asyncio
from typing import Optional
from uuid import UUID

import structlog

from app.config import get_settings
from app.engines.jobs.models import Job, JobStatus
from app.engines.jobs.repository import JobRepository
from app.engines.jobs.retry import error_message
from app.engines.jobs.state_machine import JobStateMachine

logger = structlog.get_logger()


def oldest_pending(jobs: list[Job]) -> Optional[Job]:
    pending = [job for job in jobs if job.status == JobStatus.PENDING]
    if not pending:
        return None
    return min(pending, key=lambda job: (job.created_at is None, job.created_at))


class JobDispatcher:
    """Single-slot scheduler: at most one job is processed at a time.

    ``kick()`` is cheap and idempotent. When idle it starts a drain loop that
    claims the oldest pending job, runs it, waits briefly and scans again
    until no pending jobs remain. When busy it only notes that another scan
    is wanted.
    """

    def __init__(
        self,
        repository: JobRepository,
        state_machine: JobStateMachine,
        rescan_delay: Optional[float] = None,
    ):
        self.repository = repository
        self.state_machine = state_machine
        self.rescan_delay = (
            get_settings().dispatcher_rescan_delay_seconds if rescan_delay is None else rescan_delay
        )
        self._task: Optional[asyncio.Task] = None
        self._current_job_id: Optional[UUID] = None
        self._wake = False

    @property
    def is_busy(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def current_job_id(self) -> Optional[UUID]:
        return self._current_job_id

    @property
    def status(self) -> dict:
        return {
            "running": self.is_busy,
            "current_job_id": str(self._current_job_id) if self._current_job_id else None,
            "active_workers": self.state_machine.active_lanes if self.is_busy else 0,
        }

    async def start(self) -> int:
        """Recover from a previous crash, then look for pending work."""
        recovered = await self.recover_interrupted()
        self.kick()
        logger.info("Job dispatcher started", interrupted=recovered)
        return recovered

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._current_job_id = None
        logger.info("Job dispatcher stopped")

    async def recover_interrupted(self) -> int:
        """Mark jobs left ``running`` by a dead process as ``interrupted``.

        They are never resumed automatically; a caller has to resume them.
        """
        count = 0
        for job in await self.repository.list_all():
            if job.status == JobStatus.RUNNING and await self.repository.update(
                job.id, expected_status={JobStatus.RUNNING}, status=JobStatus.INTERRUPTED
            ):
                logger.warning("Marked stale job as interrupted", job_id=str(job.id))
                count += 1
        return count

    def kick(self) -> bool:
        """Ask for pending jobs to be processed. Returns False if already busy."""
        self._wake = True
        if self.is_busy:
            return False
        self._task = asyncio.create_task(self._run_loop())
        return True

    async def wait_idle(self) -> None:
        """Wait until the current drain loop has exited."""
        while self.is_busy:
            await self._task

    async def _run_loop(self) -> None:
        while True:
            self._wake = False
            try:
                job = oldest_pending(await self.repository.list_all())
            except Exception as e:
                logger.error("Failed to scan for pending jobs", error=error_message(e))
                return

            if job is None:
                if self._wake:
                    continue
                return

            self._current_job_id = job.id
            try:
                await self.state_machine.run(job.id)
            except Exception as e:
                message = error_message(e)
                logger.error("Unhandled error processing job", job_id=str(job.id), error=message)
                try:
                    await self.repository.update(job.id, status=JobStatus.FAILED, error_message=message)
                except Exception as update_error:
                    logger.error(
                        "Failed to mark job as failed",
                        job_id=str(job.id),
                        error=error_message(update_error),
                    )
                    # Left non-terminal; a running job is marked interrupted at the next start
                    return
            finally:
                self._current_job_id = None

            await asyncio.sleep(self.rescan_delay)
