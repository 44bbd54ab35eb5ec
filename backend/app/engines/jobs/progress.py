"""In-memory job accumulators and their coalescing persistence writer."""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import structlog

from app.engines.jobs.models import Job, JobResult, SupplementaryOutcome
from app.engines.jobs.repository import JobRepository

logger = structlog.get_logger()


@dataclass
class JobProgress:
    """Counters, usage sums and results shared by the lanes of one job run.

    Lanes only append results and add to counters, so their updates commute
    under any interleaving.
    """

    total: int
    results: list[JobResult] = field(default_factory=list)
    completed: int = 0
    failed: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    @classmethod
    def from_job(cls, job: Job) -> "JobProgress":
        """Seed from a persisted job; counters are recomputed from its results."""
        results = [r.model_copy() for r in job.results]
        return cls(
            total=job.total_companies or len(job.entries),
            results=results,
            completed=sum(1 for r in results if r.succeeded),
            failed=sum(1 for r in results if not r.succeeded),
            input_tokens=job.total_input_tokens or 0,
            output_tokens=job.total_output_tokens or 0,
            cost_usd=job.total_cost_usd or 0.0,
        )

    @property
    def counts(self) -> dict:
        return {"completed": self.completed, "failed": self.failed, "total": self.total}

    def record(self, result: JobResult) -> None:
        """Merge a primary-phase result."""
        if result.succeeded:
            self.completed += 1
            self.input_tokens += result.input_tokens or 0
            self.output_tokens += result.output_tokens or 0
            self.cost_usd += result.cost_usd or 0.0
        else:
            self.failed += 1
        self.results.append(result)

    def apply_supplementary(self, index: int, outcome: SupplementaryOutcome) -> JobResult:
        """Augment an existing success result with a supplementary outcome."""
        result = self.results[index]
        usage = outcome.usage
        result.supplementary_assets_found = outcome.additional_assets
        result.supplementary_error = outcome.error
        result.input_tokens = (result.input_tokens or 0) + usage.input_tokens
        result.output_tokens = (result.output_tokens or 0) + usage.output_tokens
        result.cost_usd = (result.cost_usd or 0.0) + usage.cost_usd
        self.input_tokens += usage.input_tokens
        self.output_tokens += usage.output_tokens
        self.cost_usd += usage.cost_usd
        return result

    def snapshot(self) -> dict[str, Any]:
        """Fields to persist, detached from the live objects."""
        return {
            "completed_companies": self.completed,
            "failed_companies": self.failed,
            "results": [r.model_copy() for r in self.results],
            "total_input_tokens": self.input_tokens,
            "total_output_tokens": self.output_tokens,
            "total_cost_usd": self.cost_usd,
        }


class ProgressWriter:
    """Single writer that coalesces save requests from concurrent lanes.

    At most one write is in flight. Requests arriving meanwhile only mark the
    state dirty; when the in-flight write returns, one more write captures the
    latest snapshot. Writes are therefore never stale and never pile up.
    """

    def __init__(self, repository: JobRepository, job_id: UUID, progress: JobProgress):
        self.repository = repository
        self.job_id = job_id
        self.progress = progress
        self.writes = 0
        self._save_pending = False
        self._dirty = False

    @property
    def save_pending(self) -> bool:
        return self._save_pending

    async def request_save(self) -> None:
        if self._save_pending:
            self._dirty = True
            return

        self._save_pending = True
        try:
            while True:
                self._dirty = False
                await self.repository.update(self.job_id, **self.progress.snapshot())
                self.writes += 1
                if not self._dirty:
                    break
        finally:
            self._save_pending = False

    async def flush(self) -> None:
        """Persist the final state once every lane has exited."""
        await self.request_save()
        logger.debug("Progress flushed", job_id=str(self.job_id), writes=self.writes)
