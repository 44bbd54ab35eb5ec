"""Exceptions raised by the discovery job engine."""

from typing import Optional
from uuid import UUID


class TaskError(Exception):
    """Failure of a single company task.

    Task bodies may raise the subclasses below to state explicitly whether a
    failure is worth retrying; anything else is classified by its message.
    """

    retryable: Optional[bool] = None


class TransientTaskError(TaskError):
    """Failure expected to clear up on its own (rate limit, timeout, 5xx)."""

    retryable = True


class PermanentTaskError(TaskError):
    """Failure that will not change on retry (bad response, unknown company)."""

    retryable = False


class JobNotFoundError(LookupError):
    def __init__(self, job_id: UUID):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class UnknownProviderError(ValueError):
    def __init__(self, provider_id: str, valid: list[str]):
        super().__init__(
            f"Unknown provider: {provider_id}. Valid providers: {', '.join(valid)}"
        )
        self.provider_id = provider_id
