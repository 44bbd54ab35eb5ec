"""Domain models for discovery jobs.

Jobs, entries and results are pydantic models so they round-trip through the
JSONB columns of ``discovery_jobs`` unchanged. Task outcomes are plain
dataclasses that never leave the process.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    """Lifecycle of a discovery job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INTERRUPTED = "interrupted"


RESUMABLE_STATUSES = frozenset({JobStatus.INTERRUPTED, JobStatus.FAILED, JobStatus.CANCELLED})


def normalize_name(name: str) -> str:
    """Casefold a company name and collapse its whitespace."""
    return " ".join(name.split()).casefold()


def entry_key(name: str, isin: Optional[str] = None) -> str:
    """Canonical identity of a company entry: ISIN when known, else its name."""
    if isin and isin.strip():
        return f"isin:{isin.strip().upper()}"
    return f"name:{normalize_name(name)}"


def format_display_name(name: str, isin: Optional[str] = None) -> str:
    return f"{name} ({isin})" if isin else name


class CompanyEntry(BaseModel):
    """One company submitted for discovery."""

    model_config = ConfigDict(frozen=True)

    name: str
    isin: Optional[str] = None
    total_value: Optional[float] = None

    @property
    def key(self) -> str:
        return entry_key(self.name, self.isin)

    @property
    def display_name(self) -> str:
        return format_display_name(self.name, self.isin)

    @classmethod
    def clean(
        cls,
        name: str,
        isin: Optional[str] = None,
        total_value: Optional[float] = None,
    ) -> Optional["CompanyEntry"]:
        """Build a normalised entry, or None when the name is blank."""
        name = (name or "").strip()
        if not name:
            return None
        isin = (isin or "").strip().upper() or None
        if total_value is not None and total_value <= 0:
            total_value = None
        return cls(name=name, isin=isin, total_value=total_value)


class JobResult(BaseModel):
    """Outcome of one entry within a job."""

    name: str
    status: Literal["success", "failed"]
    entry_key: Optional[str] = None
    isin: Optional[str] = None
    assets_found: Optional[int] = None
    supplementary_assets_found: Optional[int] = None
    error: Optional[str] = None
    supplementary_error: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cost_usd: Optional[float] = None
    normalized: Optional[bool] = None
    web_research_used: Optional[bool] = None
    worker_id: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def matches(self, entry: CompanyEntry) -> bool:
        """Whether this result was produced for ``entry``.

        Results written without an ``entry_key`` are matched on the
        case-insensitive name or on the ``"name (isin)"`` display form.
        """
        if self.entry_key:
            return self.entry_key == entry.key
        recorded = self.name.lower()
        return recorded == entry.name.lower() or recorded == entry.display_name.lower()


class Job(BaseModel):
    """Persisted discovery job aggregate."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: JobStatus = JobStatus.PENDING
    primary_provider: str = "openai"
    supplementary_provider: Optional[str] = None
    total_companies: int = 0
    completed_companies: int = 0
    failed_companies: int = 0
    entries: list[CompanyEntry] = Field(default_factory=list)
    results: list[JobResult] = Field(default_factory=list)
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost_usd: float = 0.0
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("entries", "results", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value

    @property
    def counts(self) -> dict:
        return {
            "completed": self.completed_companies,
            "failed": self.failed_companies,
            "total": self.total_companies,
        }


@dataclass
class Usage:
    """Token and cost usage reported by a task."""

    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cost_usd=self.cost_usd + other.cost_usd,
        )


@dataclass
class PrimaryOutcome:
    """What the task body reports for one primary discovery attempt."""

    success: bool
    company_name: str = ""
    assets_found: int = 0
    usage: Usage = field(default_factory=Usage)
    isin: Optional[str] = None
    normalized: bool = False
    web_research_used: bool = False
    error: Optional[str] = None


@dataclass
class SupplementaryTarget:
    """A company already discovered in the primary phase, queued for review."""

    result_index: int
    name: str
    isin: Optional[str] = None
    existing_asset_count: int = 0


@dataclass
class SupplementaryOutcome:
    """What the task body reports for one supplementary review."""

    additional_assets: int = 0
    usage: Usage = field(default_factory=Usage)
    error: Optional[str] = None
