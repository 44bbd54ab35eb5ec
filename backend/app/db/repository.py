"""PostgreSQL-backed storage for discovery jobs."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Collection, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import DiscoveryJob
from app.engines.jobs.models import Job, JobStatus

logger = structlog.get_logger()


def _to_column(value: Any) -> Any:
    """Convert engine values into what the JSONB / string columns store."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if isinstance(value, list):
        return [_to_column(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


class SqlJobRepository:
    """Job repository over the ``discovery_jobs`` table.

    Each call uses its own short-lived session so concurrent lanes never
    share a connection.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, job: Job) -> UUID:
        now = datetime.now(timezone.utc)
        row = DiscoveryJob(
            id=job.id,
            status=_to_column(job.status),
            primary_provider=job.primary_provider,
            supplementary_provider=job.supplementary_provider,
            total_companies=job.total_companies,
            completed_companies=job.completed_companies,
            failed_companies=job.failed_companies,
            entries=_to_column(job.entries),
            results=_to_column(job.results),
            total_input_tokens=job.total_input_tokens,
            total_output_tokens=job.total_output_tokens,
            total_cost_usd=job.total_cost_usd,
            error_message=job.error_message,
            created_at=job.created_at or now,
            updated_at=now,
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
        return job.id

    async def get(self, job_id: UUID) -> Optional[Job]:
        async with self.session_factory() as session:
            row = await session.get(DiscoveryJob, job_id)
            return Job.model_validate(row) if row else None

    async def update(
        self,
        job_id: UUID,
        expected_status: Optional[Collection[JobStatus]] = None,
        **fields: Any,
    ) -> bool:
        values = {key: _to_column(value) for key, value in fields.items()}
        values["updated_at"] = datetime.now(timezone.utc)
        stmt = update(DiscoveryJob).where(DiscoveryJob.id == job_id)
        if expected_status is not None:
            stmt = stmt.where(DiscoveryJob.status.in_([_to_column(s) for s in expected_status]))
        async with self.session_factory() as session:
            result = await session.execute(stmt.values(**values))
            await session.commit()
        return result.rowcount > 0

    async def list_all(self) -> list[Job]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(DiscoveryJob).order_by(DiscoveryJob.created_at)
            )
            return [Job.model_validate(row) for row in result.scalars().all()]
