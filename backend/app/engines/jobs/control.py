"""Control surface for discovery jobs: submit, cancel, resume."""

from typing import Any, Iterable, Optional, Sequence, Union
from uuid import UUID, uuid4

import structlog

from app.engines.jobs.dispatcher import JobDispatcher
from app.engines.jobs.errors import JobNotFoundError, UnknownProviderError
from app.engines.jobs.events import EventType, ProgressBroker
from app.engines.jobs.models import (
    RESUMABLE_STATUSES,
    CompanyEntry,
    Job,
    JobStatus,
)
from app.engines.jobs.repository import JobRepository

logger = structlog.get_logger()

EntryInput = Union[str, CompanyEntry, dict]


def _coerce_entry(raw: EntryInput) -> Optional[CompanyEntry]:
    if isinstance(raw, CompanyEntry):
        return CompanyEntry.clean(raw.name, raw.isin, raw.total_value)
    if isinstance(raw, str):
        return CompanyEntry.clean(raw)
    total_value = raw.get("total_value", raw.get("totalValue"))
    return CompanyEntry.clean(
        raw.get("name", ""),
        raw.get("isin"),
        float(total_value) if total_value not in (None, "") else None,
    )


def normalize_entries(raw_entries: Iterable[EntryInput]) -> list[CompanyEntry]:
    """Clean submitted entries, dropping blanks and duplicate identities."""
    entries: list[CompanyEntry] = []
    seen: set[str] = set()
    for raw in raw_entries:
        entry = _coerce_entry(raw)
        if entry is None or entry.key in seen:
            continue
        seen.add(entry.key)
        entries.append(entry)
    return entries


class JobControl:
    """Entry point used by the HTTP layer and scripts."""

    def __init__(
        self,
        repository: JobRepository,
        dispatcher: Optional[JobDispatcher] = None,
        providers: Optional[Sequence[str]] = None,
        broker: Optional[ProgressBroker] = None,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.broker = broker
        self.providers = list(providers) if providers is not None else None

    def _check_provider(self, provider_id: str) -> None:
        if self.providers is not None and provider_id not in self.providers:
            raise UnknownProviderError(provider_id, self.providers)

    def _kick(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.kick()

    async def submit(
        self,
        entries: Iterable[EntryInput],
        provider_id: str,
        supplementary_provider_id: Optional[str] = None,
    ) -> UUID:
        """Create a pending job and wake the dispatcher."""
        cleaned = normalize_entries(entries)
        if not cleaned:
            raise ValueError("No valid company entries provided")
        self._check_provider(provider_id)
        if supplementary_provider_id:
            self._check_provider(supplementary_provider_id)

        job = Job(
            id=uuid4(),
            status=JobStatus.PENDING,
            primary_provider=provider_id,
            supplementary_provider=supplementary_provider_id or None,
            total_companies=len(cleaned),
            entries=cleaned,
        )
        job_id = await self.repository.create(job)
        logger.info(
            "Job submitted",
            job_id=str(job_id),
            provider=provider_id,
            supplementary_provider=supplementary_provider_id,
            total=len(cleaned),
        )
        self._kick()
        return job_id

    async def cancel(self, job_id: UUID) -> bool:
        """Cancel a pending or running job. Lanes stop at their next claim.

        A pending job never reaches the state machine, so its ``done`` event
        is published here.
        """
        job = await self.get(job_id)
        if await self.repository.update(
            job_id, expected_status={JobStatus.PENDING}, status=JobStatus.CANCELLED
        ):
            logger.info("Pending job cancelled", job_id=str(job_id))
            if self.broker is not None:
                self.broker.publish(
                    job_id, EventType.DONE, status=JobStatus.CANCELLED.value, counts=job.counts
                )
            return True
        if await self.repository.update(
            job_id, expected_status={JobStatus.RUNNING}, status=JobStatus.CANCELLED
        ):
            logger.info("Job cancelled", job_id=str(job_id))
            return True
        logger.info("Cancel rejected", job_id=str(job_id), status=job.status.value)
        return False

    async def resume(self, job_id: UUID) -> bool:
        """Put an interrupted, failed or cancelled job back in the queue."""
        job = await self.get(job_id)
        resumed = await self.repository.update(
            job_id,
            expected_status=RESUMABLE_STATUSES,
            status=JobStatus.PENDING,
            error_message=None,
        )
        if not resumed:
            logger.info("Resume rejected", job_id=str(job_id), status=job.status.value)
            return False
        logger.info(
            "Job resumed",
            job_id=str(job_id),
            recorded=len(job.results),
            total=job.total_companies,
        )
        self._kick()
        return True

    async def get(self, job_id: UUID) -> Job:
        job = await self.repository.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(self) -> list[Job]:
        jobs = await self.repository.list_all()
        return sorted(jobs, key=_created_desc)


def _created_desc(job: Job) -> Any:
    return -job.created_at.timestamp() if job.created_at else 0.0
