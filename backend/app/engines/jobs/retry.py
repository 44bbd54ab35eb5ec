"""Transient-failure classification for company tasks."""

import asyncio

import httpx
import openai

from app.engines.jobs.errors import TaskError

# Lowercase substrings that mark a failure as transient
RETRYABLE_SIGNATURES = (
    # Rate limiting
    "429",
    "rate limit",
    "rate_limit",
    "ratelimit",
    "too many requests",
    # Timeouts
    "timeout",
    "timed out",
    "etimedout",
    # Connection reset / refused
    "econnreset",
    "connection reset",
    "econnrefused",
    "connection refused",
    # Upstream 5xx
    "500",
    "502",
    "503",
    "504",
    "internal server error",
    "bad gateway",
    "service unavailable",
    # Socket / tunnel termination
    "terminated",
    "socket hang up",
    "server disconnected",
    "connection closed",
    # Generic network failure
    "fetch failed",
    "connection error",
)

RETRYABLE_EXCEPTIONS = (
    asyncio.TimeoutError,
    httpx.TimeoutException,
    httpx.TransportError,
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


def is_retryable(error_message: str) -> bool:
    """Whether an error message matches a known transient-failure signature."""
    message = (error_message or "").lower()
    return any(signature in message for signature in RETRYABLE_SIGNATURES)


def error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def is_retryable_exception(exc: BaseException) -> bool:
    """Classify an exception raised by a task body.

    Explicit ``TaskError`` kinds win, then known client exception types, then
    the message heuristic for opaque upstream errors.
    """
    if isinstance(exc, TaskError) and exc.retryable is not None:
        return exc.retryable
    if isinstance(exc, RETRYABLE_EXCEPTIONS):
        return True
    return is_retryable(error_message(exc))
