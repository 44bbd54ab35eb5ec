"""Task runner - executes one company's discovery with bounded retry."""

import asyncio
from typing import Awaitable, Callable, Optional, Protocol, TypeVar

import structlog

from app.config import get_settings
from app.engines.jobs.errors import TaskError
from app.engines.jobs.models import (
    CompanyEntry,
    JobResult,
    PrimaryOutcome,
    SupplementaryOutcome,
    SupplementaryTarget,
)
from app.engines.jobs.retry import error_message, is_retryable_exception

logger = structlog.get_logger()

T = TypeVar("T")


class DiscoveryTaskBody(Protocol):
    """The per-company work the engine schedules but does not understand."""

    async def run_primary(
        self,
        entry: CompanyEntry,
        provider_id: str,
        credential: Optional[str] = None,
    ) -> PrimaryOutcome: ...

    async def run_supplementary(
        self,
        target: SupplementaryTarget,
        provider_id: str,
        credential: Optional[str] = None,
    ) -> SupplementaryOutcome: ...


class TaskRunner:
    """Runs task bodies with linear-backoff retry on transient failures.

    Stateless between calls: every invocation returns its outcome and leaves
    aggregation to the caller.
    """

    def __init__(
        self,
        task_body: DiscoveryTaskBody,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.task_body = task_body
        self.max_retries = settings.job_max_retries if max_retries is None else max_retries
        self.backoff_seconds = (
            settings.job_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._sleep = sleep

    @property
    def attempt_budget(self) -> int:
        return self.max_retries + 1

    async def run(
        self,
        entry: CompanyEntry,
        provider_id: str,
        credential: Optional[str] = None,
        attempt_budget: Optional[int] = None,
        worker_id: int = 0,
        lane: str = "W0",
    ) -> JobResult:
        """Run primary discovery for one entry and return its result."""

        async def attempt() -> PrimaryOutcome:
            outcome = await self.task_body.run_primary(entry, provider_id, credential)
            if not outcome.success:
                raise TaskError(outcome.error or f"Discovery failed for {entry.name}")
            return outcome

        outcome, last_error = await self._with_retries(
            attempt, entry.display_name, lane, attempt_budget or self.attempt_budget
        )

        if outcome is None:
            logger.warning("Company failed", lane=lane, company=entry.display_name, error=last_error)
            return JobResult(
                name=entry.display_name,
                status="failed",
                entry_key=entry.key,
                isin=entry.isin,
                error=last_error,
                worker_id=worker_id,
            )

        logger.info(
            "Company discovered",
            lane=lane,
            company=outcome.company_name or entry.name,
            assets=outcome.assets_found,
            cost_usd=round(outcome.usage.cost_usd, 4),
        )
        return JobResult(
            name=outcome.company_name or entry.name,
            status="success",
            entry_key=entry.key,
            isin=outcome.isin or entry.isin,
            assets_found=outcome.assets_found,
            input_tokens=outcome.usage.input_tokens,
            output_tokens=outcome.usage.output_tokens,
            cost_usd=outcome.usage.cost_usd,
            normalized=outcome.normalized,
            web_research_used=outcome.web_research_used,
            worker_id=worker_id,
        )

    async def run_supplementary(
        self,
        target: SupplementaryTarget,
        provider_id: str,
        credential: Optional[str] = None,
        lane: str = "S0",
    ) -> SupplementaryOutcome:
        """Run a supplementary review; failures come back as an empty outcome."""

        async def attempt() -> SupplementaryOutcome:
            return await self.task_body.run_supplementary(target, provider_id, credential)

        outcome, last_error = await self._with_retries(
            attempt, target.name, lane, self.attempt_budget
        )
        if outcome is None:
            logger.warning("Supplementary review failed", lane=lane, company=target.name, error=last_error)
            return SupplementaryOutcome(error=last_error)

        logger.info(
            "Supplementary review done",
            lane=lane,
            company=target.name,
            new_assets=outcome.additional_assets,
            cost_usd=round(outcome.usage.cost_usd, 4),
        )
        return outcome

    async def _with_retries(
        self,
        call: Callable[[], Awaitable[T]],
        company: str,
        lane: str,
        attempts: int,
    ) -> tuple[Optional[T], str]:
        last_error = ""
        for attempt in range(attempts):
            if attempt > 0:
                delay = attempt * self.backoff_seconds
                logger.info(
                    "Retrying company",
                    lane=lane,
                    company=company,
                    attempt=attempt + 1,
                    attempts=attempts,
                    delay_seconds=delay,
                )
                await self._sleep(delay)
            try:
                return await call(), ""
            except Exception as e:
                last_error = error_message(e)
                if not is_retryable_exception(e) or attempt == attempts - 1:
                    break
        return None, last_error
