"""Job state machine - drives one claimed job through its phases.

A claimed job moves ``pending -> running`` and then through two ordered
phases:

1. Primary discovery over every entry without a recorded result.
2. Supplementary review over successful results not yet reviewed, when the
   job names a supplementary provider.

The job finishes ``complete`` if it is still ``running`` afterwards. An
error escaping a phase marks it ``failed``. A cancel observed by the lanes
stops new claims and leaves the status as ``cancelled``.
"""

from typing import Callable, Optional, Sequence
from uuid import UUID

import structlog

from app.engines.jobs.cancellation import CancellationToken
from app.engines.jobs.events import EventType, ProgressBroker
from app.engines.jobs.models import (
    CompanyEntry,
    Job,
    JobResult,
    JobStatus,
    SupplementaryTarget,
)
from app.engines.jobs.pool import Lane, WorkerPool
from app.engines.jobs.progress import JobProgress, ProgressWriter
from app.engines.jobs.repository import JobRepository
from app.engines.jobs.retry import error_message
from app.engines.jobs.runner import TaskRunner

logger = structlog.get_logger()

CredentialResolver = Callable[[str], list[str]]


def unique_entries(entries: Sequence[CompanyEntry]) -> list[CompanyEntry]:
    """Entries with duplicate identities collapsed, first occurrence kept."""
    seen: set[str] = set()
    unique = []
    for entry in entries:
        if entry.key in seen:
            continue
        seen.add(entry.key)
        unique.append(entry)
    return unique


def remaining_entries(entries: Sequence[CompanyEntry], results: Sequence[JobResult]) -> list[CompanyEntry]:
    """Entries that have no recorded result yet, in submission order."""
    return [
        entry
        for entry in unique_entries(entries)
        if not any(result.matches(entry) for result in results)
    ]


def supplementary_targets(results: Sequence[JobResult]) -> list[SupplementaryTarget]:
    """Successful results that have not been through supplementary review."""
    return [
        SupplementaryTarget(
            result_index=index,
            name=result.name,
            isin=result.isin,
            existing_asset_count=result.assets_found or 0,
        )
        for index, result in enumerate(results)
        if result.succeeded and result.supplementary_assets_found is None
    ]


class JobStateMachine:
    """Runs claimed jobs to a terminal or interruptible status."""

    def __init__(
        self,
        repository: JobRepository,
        runner: TaskRunner,
        credentials: CredentialResolver,
        broker: Optional[ProgressBroker] = None,
    ):
        self.repository = repository
        self.runner = runner
        self.credentials = credentials
        self.broker = broker or ProgressBroker()
        self.active_lanes = 0
        self._progress: Optional[JobProgress] = None

    async def run(self, job_id: UUID) -> None:
        """Process a pending job. Orchestration errors mark it ``failed``."""
        try:
            await self._run(job_id)
        except Exception as e:
            message = error_message(e)
            logger.error("Job failed", job_id=str(job_id), error=message)
            await self.repository.update(job_id, status=JobStatus.FAILED, error_message=message)
            self.broker.publish(
                job_id,
                EventType.DONE,
                status=JobStatus.FAILED.value,
                message=message,
                counts=self._progress.counts if self._progress else {},
            )
        finally:
            self.active_lanes = 0
            self._progress = None

    async def _run(self, job_id: UUID) -> None:
        job = await self.repository.get(job_id)
        if job is None:
            logger.warning("Job disappeared before processing", job_id=str(job_id))
            return
        if job.status != JobStatus.PENDING:
            logger.info("Job no longer pending, skipping", job_id=str(job_id), status=job.status.value)
            return

        if not job.entries:
            failed = await self.repository.update(
                job_id,
                expected_status={JobStatus.PENDING},
                status=JobStatus.FAILED,
                error_message="No company entries to process",
            )
            if failed:
                self.broker.publish(job_id, EventType.DONE, status=JobStatus.FAILED.value, counts=job.counts)
            return

        entries = unique_entries(job.entries)
        progress = JobProgress.from_job(job)
        progress.total = len(entries)
        claimed = await self.repository.update(
            job_id,
            expected_status={JobStatus.PENDING},
            status=JobStatus.RUNNING,
            total_companies=progress.total,
            completed_companies=progress.completed,
            failed_companies=progress.failed,
            error_message=None,
        )
        if not claimed:
            logger.info("Job changed status before it was claimed, skipping", job_id=str(job_id))
            return
        self._progress = progress

        token = CancellationToken(self.repository, job_id)
        remaining = remaining_entries(entries, progress.results)
        logger.info(
            "Job started",
            job_id=str(job_id),
            provider=job.primary_provider,
            supplementary_provider=job.supplementary_provider,
            total=progress.total,
            remaining=len(remaining),
            already_done=progress.total - len(remaining),
        )
        self.broker.publish(job_id, EventType.STARTED, counts=progress.counts)

        await self._primary_phase(job, remaining, progress, token)

        if job.supplementary_provider and not token.cancelled:
            await self._supplementary_phase(job, progress, token)

        await self._finalize(job_id, progress)

    async def _primary_phase(
        self,
        job: Job,
        remaining: list[CompanyEntry],
        progress: JobProgress,
        token: CancellationToken,
    ) -> None:
        if not remaining:
            logger.info("No remaining entries for primary phase", job_id=str(job.id))
            return

        pool: WorkerPool[CompanyEntry] = WorkerPool(
            self.credentials(job.primary_provider), token, label_prefix="W"
        )
        writer = ProgressWriter(self.repository, job.id, progress)
        self.active_lanes = pool.size
        logger.info(
            "Primary phase",
            job_id=str(job.id),
            lanes=pool.size,
            mode="parallel" if pool.parallel else "sequential",
            entries=len(remaining),
        )

        async def handle(entry: CompanyEntry, lane: Lane) -> None:
            self.broker.publish(
                job.id, EventType.PROCESSING, phase="primary", company=entry.display_name
            )
            result = await self.runner.run(
                entry,
                job.primary_provider,
                credential=lane.credential,
                worker_id=lane.worker_id,
                lane=lane.label,
            )
            progress.record(result)
            if result.succeeded:
                self.broker.publish(
                    job.id,
                    EventType.COMPLETED,
                    phase="primary",
                    company=result.name,
                    assets_found=result.assets_found,
                    counts=progress.counts,
                )
            else:
                self.broker.publish(
                    job.id,
                    EventType.ERROR,
                    phase="primary",
                    company=result.name,
                    message=result.error,
                    counts=progress.counts,
                )
            await writer.request_save()

        try:
            stats = await pool.run(remaining, handle)
        finally:
            await writer.flush()

        logger.info(
            "Primary phase finished",
            job_id=str(job.id),
            claimed=stats.claimed,
            unclaimed=stats.unclaimed,
            cancelled=stats.cancelled,
            completed=progress.completed,
            failed=progress.failed,
        )

    async def _supplementary_phase(
        self,
        job: Job,
        progress: JobProgress,
        token: CancellationToken,
    ) -> None:
        provider_id = job.supplementary_provider
        targets = supplementary_targets(progress.results)
        if not targets:
            logger.info("Supplementary phase already done", job_id=str(job.id), provider=provider_id)
            return

        pool: WorkerPool[SupplementaryTarget] = WorkerPool(
            self.credentials(provider_id), token, label_prefix="S"
        )
        writer = ProgressWriter(self.repository, job.id, progress)
        self.active_lanes = pool.size
        logger.info(
            "Supplementary phase",
            job_id=str(job.id),
            provider=provider_id,
            lanes=pool.size,
            targets=len(targets),
        )

        async def handle(target: SupplementaryTarget, lane: Lane) -> None:
            self.broker.publish(job.id, EventType.PROCESSING, phase="supplementary", company=target.name)
            outcome = await self.runner.run_supplementary(
                target, provider_id, credential=lane.credential, lane=lane.label
            )
            progress.apply_supplementary(target.result_index, outcome)
            if outcome.error:
                self.broker.publish(
                    job.id,
                    EventType.ERROR,
                    phase="supplementary",
                    company=target.name,
                    message=outcome.error,
                    counts=progress.counts,
                )
            else:
                self.broker.publish(
                    job.id,
                    EventType.COMPLETED,
                    phase="supplementary",
                    company=target.name,
                    assets_found=outcome.additional_assets,
                    counts=progress.counts,
                )
            await writer.request_save()

        try:
            stats = await pool.run(targets, handle)
        finally:
            await writer.flush()

        logger.info(
            "Supplementary phase finished",
            job_id=str(job.id),
            reviewed=stats.claimed,
            cancelled=stats.cancelled,
            cost_usd=round(progress.cost_usd, 4),
        )

    async def _finalize(self, job_id: UUID, progress: JobProgress) -> None:
        completed = await self.repository.update(
            job_id, expected_status={JobStatus.RUNNING}, status=JobStatus.COMPLETE, **progress.snapshot()
        )
        if completed:
            status = JobStatus.COMPLETE
        else:
            current = await self.repository.get(job_id)
            status = current.status if current else JobStatus.FAILED

        logger.info(
            "Job finished",
            job_id=str(job_id),
            status=status.value,
            completed=progress.completed,
            failed=progress.failed,
            total=progress.total,
            cost_usd=round(progress.cost_usd, 4),
        )
        self.broker.publish(job_id, EventType.DONE, status=status.value, counts=progress.counts)
