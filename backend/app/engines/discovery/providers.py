"""LLM providers for asset discovery.

OpenAI, DeepSeek and Gemini expose OpenAI-compatible endpoints and go through
the openai SDK wrapped by instructor. Claude and MiniMax are called over
plain HTTP and their JSON is pulled out of the reply text.
"""

import re
from dataclasses import dataclass
from typing import Optional, TypeVar

import instructor
import structlog
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from app.config import get_settings
from app.engines.http_client import create_http_client
from app.engines.discovery.prompts import JSON_ONLY_SUFFIX
from app.engines.jobs.errors import PermanentTaskError, TaskError, UnknownProviderError
from app.engines.jobs.models import Usage

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)

CLAUDE_API_URL = "https://api.anthropic.com/v1/messages"
CLAUDE_API_VERSION = "2023-06-01"
MINIMAX_API_URL = "https://api.minimax.io/v1/text/chatcompletion_v2"

JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True)
class ProviderConfig:
    id: str
    name: str
    label: str  # used in asset data_source, e.g. "AI Discovery (DeepSeek)"
    model: str
    cost_per_1k_input: float
    cost_per_1k_output: float
    base_url: Optional[str] = None  # set for OpenAI-compatible providers

    @property
    def openai_compatible(self) -> bool:
        return self.base_url is not None


PROVIDERS: dict[str, ProviderConfig] = {
    "openai": ProviderConfig(
        id="openai",
        name="OpenAI (GPT-5 Mini)",
        label="GPT",
        model="gpt-5-mini",
        cost_per_1k_input=0.00015,
        cost_per_1k_output=0.0006,
        base_url="https://api.openai.com/v1",
    ),
    "deepseek": ProviderConfig(
        id="deepseek",
        name="DeepSeek (V3)",
        label="DeepSeek",
        model="deepseek-chat",
        cost_per_1k_input=0.00028,
        cost_per_1k_output=0.00042,
        base_url="https://api.deepseek.com/v1",
    ),
    "gemini": ProviderConfig(
        id="gemini",
        name="Google Gemini (2.0 Flash)",
        label="Gemini",
        model="gemini-2.0-flash",
        cost_per_1k_input=0.0001,
        cost_per_1k_output=0.0004,
        base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
    ),
    "claude": ProviderConfig(
        id="claude",
        name="Claude (Sonnet 4)",
        label="Claude",
        model="claude-sonnet-4-20250514",
        cost_per_1k_input=0.003,
        cost_per_1k_output=0.015,
    ),
    "minimax": ProviderConfig(
        id="minimax",
        name="MiniMax (M2.5)",
        label="MiniMax",
        model="MiniMax-M2.5",
        cost_per_1k_input=0.00015,
        cost_per_1k_output=0.0006,
    ),
}


def get_provider(provider_id: str) -> ProviderConfig:
    config = PROVIDERS.get(provider_id)
    if config is None:
        raise UnknownProviderError(provider_id, list(PROVIDERS))
    return config


def provider_label(provider_id: str) -> str:
    config = PROVIDERS.get(provider_id)
    return config.label if config else provider_id


def calculate_cost(provider_id: str, input_tokens: int, output_tokens: int) -> float:
    config = PROVIDERS.get(provider_id)
    if config is None:
        return 0.0
    return (input_tokens / 1000) * config.cost_per_1k_input + (
        output_tokens / 1000
    ) * config.cost_per_1k_output


def _split_keys(raw: str) -> list[str]:
    return [key.strip() for key in (raw or "").split(",") if key.strip()]


def resolve_api_key(provider_id: str) -> str:
    """The provider's primary API key, or "" when it is not configured."""
    get_provider(provider_id)
    return getattr(get_settings(), f"{provider_id}_api_key", "") or ""


def parallel_credentials(provider_id: str) -> list[str]:
    """All distinct keys for a provider: the primary key, then the extras.

    Two or more keys let the job engine run one lane per key.
    """
    settings = get_settings()
    keys = [resolve_api_key(provider_id)]
    keys.extend(_split_keys(getattr(settings, f"{provider_id}_api_keys", "")))
    unique: list[str] = []
    for key in keys:
        if key and key not in unique:
            unique.append(key)
    return unique


def list_providers() -> list[dict]:
    return [
        {
            "id": config.id,
            "name": config.name,
            "model": config.model,
            "cost_per_1k_input_tokens": config.cost_per_1k_input,
            "cost_per_1k_output_tokens": config.cost_per_1k_output,
            "available": bool(resolve_api_key(config.id)),
            "parallel_keys": len(parallel_credentials(config.id)),
        }
        for config in PROVIDERS.values()
    ]


def extract_json(text: str) -> str:
    """Pull the outermost JSON object out of a free-text reply."""
    match = JSON_OBJECT_RE.search(text or "")
    return match.group(0) if match else (text or "")


def token_limit_param(model: str, max_tokens: int) -> dict:
    """Reasoning-family OpenAI models reject ``max_tokens``."""
    if model.startswith(("gpt-5", "o1", "o3", "o4")):
        return {"max_completion_tokens": max_tokens}
    return {"max_tokens": max_tokens}


def parse_reply(text: str, response_model: type[ModelT], provider_id: str) -> ModelT:
    try:
        return response_model.model_validate_json(extract_json(text))
    except ValidationError as e:
        raise PermanentTaskError(
            f"Invalid JSON from {provider_id}: {e.error_count()} validation errors"
        ) from e


async def call_llm(
    provider_id: str,
    system_prompt: str,
    user_prompt: str,
    response_model: type[ModelT],
    api_key: Optional[str] = None,
) -> tuple[ModelT, Usage]:
    """Run one structured completion and report its token usage and cost."""
    config = get_provider(provider_id)
    key = api_key or resolve_api_key(provider_id)
    if not key:
        raise PermanentTaskError(
            f"API key not configured for {config.name}. Set {provider_id.upper()}_API_KEY."
        )

    if config.openai_compatible:
        parsed, input_tokens, output_tokens = await _call_openai_compatible(
            config, key, system_prompt, user_prompt, response_model
        )
    elif provider_id == "claude":
        parsed, input_tokens, output_tokens = await _call_claude(
            config, key, system_prompt, user_prompt, response_model
        )
    else:
        parsed, input_tokens, output_tokens = await _call_minimax(
            config, key, system_prompt, user_prompt, response_model
        )

    usage = Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost_usd=calculate_cost(provider_id, input_tokens, output_tokens),
    )
    logger.debug(
        "LLM call complete",
        provider=provider_id,
        model=config.model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
    )
    return parsed, usage


async def _call_openai_compatible(
    config: ProviderConfig,
    api_key: str,
    system_prompt: str,
    user_prompt: str,
    response_model: type[ModelT],
) -> tuple[ModelT, int, int]:
    settings = get_settings()
    base_url = settings.openai_base_url if config.id == "openai" else config.base_url
    # Retries are owned by the job engine
    client = instructor.from_openai(
        AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=settings.http_timeout_seconds,
            max_retries=0,
        ),
        mode=instructor.Mode.JSON,
    )
    parsed, completion = await client.chat.completions.create_with_completion(
        model=config.model,
        response_model=response_model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        **token_limit_param(config.model, settings.llm_max_tokens),
    )
    usage = completion.usage
    return (
        parsed,
        usage.prompt_tokens if usage else 0,
        usage.completion_tokens if usage else 0,
    )


async def _call_claude(
    config: ProviderConfig,
    api_key: str,
    system_prompt: str,
    user_prompt: str,
    response_model: type[ModelT],
) -> tuple[ModelT, int, int]:
    settings = get_settings()
    headers = {"x-api-key": api_key, "anthropic-version": CLAUDE_API_VERSION}
    async with create_http_client(headers=headers) as client:
        response = await client.post(
            CLAUDE_API_URL,
            json={
                "model": config.model,
                "max_tokens": settings.llm_max_tokens,
                "system": system_prompt + JSON_ONLY_SUFFIX,
                "messages": [{"role": "user", "content": user_prompt}],
            },
        )
    if response.status_code >= 400:
        raise TaskError(f"Claude API error ({response.status_code}): {response.text[:500]}")

    data = response.json()
    text = next(
        (block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"),
        "",
    )
    usage = data.get("usage") or {}
    return (
        parse_reply(text, response_model, config.id),
        usage.get("input_tokens", 0),
        usage.get("output_tokens", 0),
    )


async def _call_minimax(
    config: ProviderConfig,
    api_key: str,
    system_prompt: str,
    user_prompt: str,
    response_model: type[ModelT],
) -> tuple[ModelT, int, int]:
    settings = get_settings()
    headers = {"Authorization": f"Bearer {api_key}"}
    async with create_http_client(headers=headers) as client:
        response = await client.post(
            MINIMAX_API_URL,
            json={
                "model": config.model,
                "messages": [
                    {"role": "system", "name": "assistant", "content": system_prompt + JSON_ONLY_SUFFIX},
                    {"role": "user", "name": "user", "content": user_prompt},
                ],
                "max_completion_tokens": settings.llm_max_tokens,
            },
        )
    if response.status_code >= 400:
        raise TaskError(f"MiniMax API error ({response.status_code}): {response.text[:500]}")

    data = response.json()
    base_resp = data.get("base_resp") or {}
    if base_resp.get("status_code"):
        raise TaskError(f"MiniMax error: {base_resp.get('status_msg') or 'Unknown error'}")

    choices = data.get("choices") or [{}]
    text = (choices[0].get("message") or {}).get("content") or ""
    usage = data.get("usage") or {}
    return (
        parse_reply(text, response_model, config.id),
        usage.get("prompt_tokens", 0),
        usage.get("completion_tokens", 0),
    )
