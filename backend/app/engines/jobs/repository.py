"""Persistence contract the job engine depends on."""

from typing import Any, Collection, Optional, Protocol
from uuid import UUID

from app.engines.jobs.models import Job, JobStatus


class JobRepository(Protocol):
    """Read/update-by-id storage for discovery jobs.

    ``update`` overwrites only the given fields and must advance
    ``updated_at`` on every call; readers use it to spot stalled jobs.
    With ``expected_status`` the write only lands while the stored status
    is one of those values, checked and written in one step. It returns
    whether a row was written.
    """

    async def create(self, job: Job) -> UUID: ...

    async def get(self, job_id: UUID) -> Optional[Job]: ...

    async def update(
        self,
        job_id: UUID,
        expected_status: Optional[Collection[JobStatus]] = None,
        **fields: Any,
    ) -> bool: ...

    async def list_all(self) -> list[Job]: ...
