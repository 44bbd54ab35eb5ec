"""
Pytest fixtures for the discovery job engine.

Provides an in-memory job repository and a scripted task body so the
engine can be exercised without a database or LLM provider.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Collection, Optional, Union
from uuid import UUID, uuid4

# Set before any app import so the cached Settings pick them up.
os.environ["ENVIRONMENT"] = "development"
os.environ["JOB_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["DISPATCHER_RESCAN_DELAY_SECONDS"] = "0"
for _provider in ("OPENAI", "DEEPSEEK", "GEMINI", "CLAUDE", "MINIMAX"):
    os.environ[f"{_provider}_API_KEY"] = ""
    os.environ[f"{_provider}_API_KEYS"] = ""
os.environ["SERPER_API_KEY"] = ""

import pytest

from app.engines.jobs.events import ProgressBroker
from app.engines.jobs.models import (
    CompanyEntry,
    Job,
    JobStatus,
    PrimaryOutcome,
    SupplementaryOutcome,
    SupplementaryTarget,
    Usage,
)
from app.engines.jobs.runner import TaskRunner
from app.engines.jobs.state_machine import JobStateMachine

ScriptItem = Union[Exception, PrimaryOutcome]


class InMemoryJobRepository:
    """Job repository backed by a dict. ``updated_at`` strictly increases."""

    def __init__(self):
        self.jobs: dict[UUID, Job] = {}
        self.updates: list[tuple[UUID, dict]] = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(milliseconds=1)
        return self._clock

    async def create(self, job: Job) -> UUID:
        now = self._tick()
        self.jobs[job.id] = job.model_copy(
            update={"created_at": job.created_at or now, "updated_at": now}, deep=True
        )
        return job.id

    async def get(self, job_id: UUID) -> Optional[Job]:
        job = self.jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def update(
        self,
        job_id: UUID,
        expected_status: Optional[Collection[JobStatus]] = None,
        **fields: Any,
    ) -> bool:
        self.updates.append((job_id, fields))
        job = self.jobs.get(job_id)
        if job is None:
            return False
        if expected_status is not None and job.status not in expected_status:
            return False
        self.jobs[job_id] = job.model_copy(update={**fields, "updated_at": self._tick()}, deep=True)
        return True

    async def list_all(self) -> list[Job]:
        return [job.model_copy(deep=True) for job in self.jobs.values()]

    async def add_job(self, entries: list, **fields: Any) -> Job:
        """Create a job from names or entries and return the stored copy."""
        job = Job(
            id=uuid4(),
            entries=[CompanyEntry(name=e) if isinstance(e, str) else e for e in entries],
            total_companies=len(entries),
            **fields,
        )
        await self.create(job)
        return await self.get(job.id)


class InterleavingJobRepository(InMemoryJobRepository):
    """Runs a queued write right after the next read has taken its snapshot.

    Lets a test land a concurrent status change between a caller's read and
    its following write.
    """

    def __init__(self):
        super().__init__()
        self.after_read = None

    async def get(self, job_id: UUID) -> Optional[Job]:
        job = await super().get(job_id)
        if self.after_read is not None:
            write, self.after_read = self.after_read, None
            await write()
        return job


class ScriptedTaskBody:
    """Task body whose per-company behaviour is scripted.

    ``script`` maps an entry name to the items returned (outcomes) or raised
    (exceptions) on successive calls. Unscripted calls succeed with three
    assets.
    """

    def __init__(
        self,
        script: Optional[dict[str, list[ScriptItem]]] = None,
        supplementary_script: Optional[dict[str, list[Union[Exception, SupplementaryOutcome]]]] = None,
        on_primary=None,
        yield_control: bool = True,
    ):
        self.script = {name: list(items) for name, items in (script or {}).items()}
        self.supplementary_script = {
            name: list(items) for name, items in (supplementary_script or {}).items()
        }
        self.on_primary = on_primary
        self.yield_control = yield_control
        self.primary_calls: list[tuple[str, Optional[str]]] = []
        self.supplementary_calls: list[tuple[str, Optional[str]]] = []

    def attempts(self, name: str) -> int:
        return sum(1 for called, _ in self.primary_calls if called == name)

    async def run_primary(
        self,
        entry: CompanyEntry,
        provider_id: str,
        credential: Optional[str] = None,
    ) -> PrimaryOutcome:
        self.primary_calls.append((entry.name, credential))
        if self.yield_control:
            await asyncio.sleep(0)
        if self.on_primary is not None:
            await self.on_primary(entry)

        items = self.script.get(entry.name)
        if items:
            item = items.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return PrimaryOutcome(
            success=True,
            company_name=entry.name,
            assets_found=3,
            usage=Usage(input_tokens=100, output_tokens=50, cost_usd=0.01),
            isin=entry.isin,
        )

    async def run_supplementary(
        self,
        target: SupplementaryTarget,
        provider_id: str,
        credential: Optional[str] = None,
    ) -> SupplementaryOutcome:
        self.supplementary_calls.append((target.name, credential))
        if self.yield_control:
            await asyncio.sleep(0)

        items = self.supplementary_script.get(target.name)
        if items:
            item = items.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return SupplementaryOutcome(
            additional_assets=2,
            usage=Usage(input_tokens=10, output_tokens=5, cost_usd=0.001),
        )


def no_credentials(provider_id: str) -> list[str]:
    return []


@pytest.fixture
def repository():
    return InMemoryJobRepository()


@pytest.fixture
def task_body():
    return ScriptedTaskBody()


@pytest.fixture
def broker():
    return ProgressBroker()


@pytest.fixture
def make_machine(repository, broker):
    """Build a state machine around a task body and a credential resolver."""

    def factory(body: ScriptedTaskBody, credentials=no_credentials) -> JobStateMachine:
        runner = TaskRunner(body, max_retries=2, backoff_seconds=0)
        return JobStateMachine(repository, runner, credentials, broker)

    return factory
