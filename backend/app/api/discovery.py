"""Discovery job API endpoints."""

import json
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import AliasChoices, BaseModel, Field

from app.config import get_settings
from app.engines.discovery.providers import PROVIDERS, list_providers, parallel_credentials
from app.engines.discovery.web_search import is_serper_available
from app.engines.jobs import (
    JobControl,
    JobDispatcher,
    JobNotFoundError,
    JobResult,
    JobStatus,
    ProgressBroker,
    UnknownProviderError,
)
from app.engines.jobs.models import CompanyEntry, Job

router = APIRouter()

TERMINAL_STATUSES = {JobStatus.COMPLETE, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.INTERRUPTED}


def get_control(request: Request) -> JobControl:
    return request.app.state.job_control


def get_dispatcher(request: Request) -> JobDispatcher:
    return request.app.state.job_dispatcher


def get_broker(request: Request) -> ProgressBroker:
    return request.app.state.progress_broker


class CompanyEntryRequest(BaseModel):
    """One company to discover."""

    name: str
    isin: Optional[str] = None
    total_value: Optional[float] = Field(
        None, validation_alias=AliasChoices("total_value", "totalValue")
    )


class SubmitJobRequest(BaseModel):
    """Batch of companies to run through discovery."""

    entries: list[CompanyEntryRequest] = Field(default_factory=list)
    company_names: list[str] = Field(default_factory=list)
    provider: str = "openai"
    supplementary_provider: Optional[str] = None


class SubmitJobResponse(BaseModel):
    job_id: UUID
    total: int
    provider: str
    supplementary_provider: Optional[str] = None
    status: str


class ActionResponse(BaseModel):
    success: bool


class JobSummaryResponse(BaseModel):
    """Job without its entry and result lists."""

    id: UUID
    status: JobStatus
    primary_provider: str
    supplementary_provider: Optional[str] = None
    total_companies: int
    completed_companies: int
    failed_companies: int
    total_input_tokens: int
    total_output_tokens: int
    total_cost_usd: float
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    stalled: bool = False


class JobDetailResponse(JobSummaryResponse):
    entries: list[CompanyEntry]
    results: list[JobResult]


class StatusResponse(BaseModel):
    running: bool
    current_job_id: Optional[str] = None
    active_workers: int
    parallel_capacity: dict[str, int]
    web_research_available: bool


def is_stalled(job: Job, now: Optional[datetime] = None) -> bool:
    """A running job whose last write is older than the configured threshold."""
    if job.status != JobStatus.RUNNING or job.updated_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    updated_at = job.updated_at
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return now - updated_at > timedelta(seconds=get_settings().job_stalled_after_seconds)


def _summary(job: Job) -> JobSummaryResponse:
    data = job.model_dump(exclude={"entries", "results"})
    return JobSummaryResponse(**data, stalled=is_stalled(job))


@router.post("/jobs", response_model=SubmitJobResponse)
async def submit_job(
    request: SubmitJobRequest,
    control: JobControl = Depends(get_control),
):
    """Queue a discovery job."""
    raw = [entry.model_dump() for entry in request.entries] + list(request.company_names)
    try:
        job_id = await control.submit(raw, request.provider, request.supplementary_provider)
    except UnknownProviderError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    job = await control.get(job_id)
    return SubmitJobResponse(
        job_id=job_id,
        total=job.total_companies,
        provider=job.primary_provider,
        supplementary_provider=job.supplementary_provider,
        status=job.status.value,
    )


@router.get("/jobs", response_model=list[JobSummaryResponse])
async def list_jobs(control: JobControl = Depends(get_control)):
    """List discovery jobs, newest first."""
    return [_summary(job) for job in await control.list_jobs()]


@router.get("/jobs/{job_id}", response_model=JobDetailResponse)
async def get_job(job_id: UUID, control: JobControl = Depends(get_control)):
    try:
        job = await control.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobDetailResponse(
        **_summary(job).model_dump(),
        entries=job.entries,
        results=job.results,
    )


@router.post("/jobs/{job_id}/cancel", response_model=ActionResponse)
async def cancel_job(job_id: UUID, control: JobControl = Depends(get_control)):
    """Cancel a pending or running job."""
    try:
        cancelled = await control.cancel(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    if not cancelled:
        raise HTTPException(status_code=400, detail="Job cannot be cancelled in its current state")
    return ActionResponse(success=True)


@router.post("/jobs/{job_id}/resume", response_model=ActionResponse)
async def resume_job(job_id: UUID, control: JobControl = Depends(get_control)):
    """Resume an interrupted, failed or cancelled job."""
    try:
        resumed = await control.resume(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    if not resumed:
        raise HTTPException(status_code=400, detail="Job cannot be resumed in its current state")
    return ActionResponse(success=True)


@router.get("/jobs/{job_id}/events")
async def stream_job_events(
    job_id: UUID,
    control: JobControl = Depends(get_control),
    broker: ProgressBroker = Depends(get_broker),
):
    """Live progress as server-sent events.

    There is no replay: clients that connect mid-job should read the job
    record for the progress so far.
    """
    try:
        await control.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")

    async def event_stream():
        # Subscribed before the re-read, so a job finishing in between still ends the stream
        queue = broker.subscribe(job_id)
        try:
            current = await control.get(job_id)
            if current.status in TERMINAL_STATUSES:
                payload = {
                    "type": "done",
                    "job_id": str(job_id),
                    "status": current.status.value,
                    "counts": current.counts,
                }
                yield f"data: {json.dumps(payload)}\n\n"
                return
            async for event in broker.stream(job_id, queue):
                yield f"data: {json.dumps(event.to_dict())}\n\n"
        finally:
            broker.unsubscribe(job_id, queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/providers")
async def get_providers():
    """LLM providers with pricing and availability."""
    return list_providers()


@router.get("/status", response_model=StatusResponse)
async def get_status(dispatcher: JobDispatcher = Depends(get_dispatcher)):
    """Dispatcher state and parallel capacity per provider."""
    return StatusResponse(
        **dispatcher.status,
        parallel_capacity={
            provider_id: max(1, len(parallel_credentials(provider_id))) for provider_id in PROVIDERS
        },
        web_research_available=is_serper_available(),
    )
