"""Live progress events for running jobs.

Events are delivered in publish order to whoever is subscribed at the time.
There is no replay: a consumer that connects mid-job reads the persisted job
record for the state so far.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Optional
from uuid import UUID


class EventType(str, Enum):
    STARTED = "started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    DONE = "done"


@dataclass
class JobEvent:
    """A single progress event for a job."""

    type: EventType
    job_id: UUID
    sequence: int
    phase: Optional[str] = None
    company: Optional[str] = None
    assets_found: Optional[int] = None
    message: Optional[str] = None
    status: Optional[str] = None
    counts: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        data = {
            "type": self.type.value,
            "job_id": str(self.job_id),
            "sequence": self.sequence,
            "counts": self.counts,
            "ts": self.timestamp.isoformat(),
        }
        for key in ("phase", "company", "assets_found", "message", "status"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


class ProgressBroker:
    """In-process fan-out of job events to subscriber queues."""

    def __init__(self):
        self._subscribers: dict[UUID, list[asyncio.Queue]] = {}
        self._sequence: dict[UUID, int] = {}

    def publish(self, job_id: UUID, event_type: EventType, **data) -> JobEvent:
        sequence = self._sequence.get(job_id, 0) + 1
        self._sequence[job_id] = sequence
        event = JobEvent(type=event_type, job_id=job_id, sequence=sequence, **data)

        for queue in self._subscribers.get(job_id, []):
            queue.put_nowait(event)
        if event_type == EventType.DONE:
            self._sequence.pop(job_id, None)
            # None closes every open stream for this job
            for queue in self._subscribers.pop(job_id, []):
                queue.put_nowait(None)
        return event

    def subscribe(self, job_id: UUID) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(job_id, []).append(queue)
        return queue

    def unsubscribe(self, job_id: UUID, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(job_id)
        if queues and queue in queues:
            queues.remove(queue)
            if not queues:
                del self._subscribers[job_id]

    def subscriber_count(self, job_id: UUID) -> int:
        return len(self._subscribers.get(job_id, []))

    async def stream(
        self, job_id: UUID, queue: Optional[asyncio.Queue] = None
    ) -> AsyncIterator[JobEvent]:
        """Yield events for a job until it publishes ``done``.

        Pass a queue from ``subscribe`` to start from an earlier subscription.
        """
        if queue is None:
            queue = self.subscribe(job_id)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            self.unsubscribe(job_id, queue)
