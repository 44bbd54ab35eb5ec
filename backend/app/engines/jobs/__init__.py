"""Discovery job engine - runs batches of companies through discovery.

This module provides:
- TaskRunner: one company's discovery with bounded retry
- WorkerPool: one lane per credential over a shared queue
- JobStateMachine: primary and supplementary phases for a claimed job
- JobDispatcher: processes pending jobs one at a time
- JobControl: submit / cancel / resume
"""

from app.engines.jobs.control import JobControl, normalize_entries
from app.engines.jobs.dispatcher import JobDispatcher
from app.engines.jobs.errors import (
    JobNotFoundError,
    PermanentTaskError,
    TaskError,
    TransientTaskError,
    UnknownProviderError,
)
from app.engines.jobs.events import EventType, JobEvent, ProgressBroker
from app.engines.jobs.models import (
    CompanyEntry,
    Job,
    JobResult,
    JobStatus,
    PrimaryOutcome,
    SupplementaryOutcome,
    SupplementaryTarget,
    Usage,
    entry_key,
)
from app.engines.jobs.pool import Lane, WorkerPool
from app.engines.jobs.repository import JobRepository
from app.engines.jobs.retry import is_retryable
from app.engines.jobs.runner import DiscoveryTaskBody, TaskRunner
from app.engines.jobs.state_machine import JobStateMachine

__all__ = [
    # Control
    "JobControl",
    "JobDispatcher",
    "JobStateMachine",
    "normalize_entries",
    # Execution
    "TaskRunner",
    "DiscoveryTaskBody",
    "WorkerPool",
    "Lane",
    "is_retryable",
    # Models
    "CompanyEntry",
    "Job",
    "JobResult",
    "JobStatus",
    "PrimaryOutcome",
    "SupplementaryOutcome",
    "SupplementaryTarget",
    "Usage",
    "entry_key",
    "JobRepository",
    # Events
    "EventType",
    "JobEvent",
    "ProgressBroker",
    # Errors
    "TaskError",
    "TransientTaskError",
    "PermanentTaskError",
    "JobNotFoundError",
    "UnknownProviderError",
]
