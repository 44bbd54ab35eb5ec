"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import router as api_router
from app.config import get_settings
from app.db import SqlJobRepository, async_session_factory, init_models
from app.engines.discovery import PROVIDERS, AssetDiscoveryTask, AssetStore, parallel_credentials
from app.engines.jobs import (
    JobControl,
    JobDispatcher,
    JobStateMachine,
    ProgressBroker,
    TaskRunner,
)

settings = get_settings()
logger = structlog.get_logger()

# Initialize Sentry if configured
if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment,
        traces_sample_rate=0.1 if settings.is_production else 1.0,
    )


def build_engine(app: FastAPI) -> JobDispatcher:
    """Wire the job engine onto ``app.state``."""
    repository = SqlJobRepository(async_session_factory)
    broker = ProgressBroker()
    runner = TaskRunner(AssetDiscoveryTask(AssetStore(async_session_factory)))
    state_machine = JobStateMachine(repository, runner, parallel_credentials, broker)
    dispatcher = JobDispatcher(repository, state_machine)

    app.state.progress_broker = broker
    app.state.job_dispatcher = dispatcher
    app.state.job_control = JobControl(repository, dispatcher, providers=list(PROVIDERS), broker=broker)
    return dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting Asset Discovery API", environment=settings.environment)
    await init_models()
    dispatcher = build_engine(app)
    # Jobs left running by a previous process become interrupted, never auto-resumed
    await dispatcher.start()
    yield
    # Shutdown
    logger.info("Shutting down Asset Discovery API")
    await dispatcher.stop()


app = FastAPI(
    title="Asset Discovery API",
    description="Background discovery of company physical assets",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_router, prefix="/api")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}
