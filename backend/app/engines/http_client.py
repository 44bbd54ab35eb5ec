"""Shared HTTP client factory for outbound API calls.

Usage:
    from app.engines.http_client import create_http_client

    async with create_http_client() as client:
        response = await client.post("https://google.serper.dev/search", json={...})
"""

from typing import Optional

import httpx

from app.config import get_settings

settings = get_settings()


def get_default_headers(user_agent: Optional[str] = None) -> dict[str, str]:
    """Default headers for JSON APIs."""
    return {
        "User-Agent": user_agent or settings.http_user_agent,
        "Accept": "application/json",
        "Content-Type": "application/json",
    }


def create_http_client(
    timeout: Optional[float] = None,
    user_agent: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> httpx.AsyncClient:
    """
    Create a configured httpx.AsyncClient.

    Args:
        timeout: Request timeout in seconds. Defaults to settings.http_timeout_seconds.
        user_agent: Custom user agent string. Defaults to settings.http_user_agent.
        headers: Additional headers merged over the defaults (API keys etc.).

    Returns:
        Configured httpx.AsyncClient instance.
    """
    default_timeout = timeout if timeout is not None else float(settings.http_timeout_seconds)
    default_headers = get_default_headers(user_agent=user_agent)
    if headers:
        default_headers.update(headers)

    return httpx.AsyncClient(
        timeout=default_timeout,
        follow_redirects=True,
        headers=default_headers,
    )
