"""Chat-completion client for rubric scoring, OpenAI or Anthropic.

Usage:
    from app.services.ai_client import ai_chat

    text = await ai_chat(
        messages=[
            {"role": "system", "content": "You are a CEFR evaluator."},
            {"role": "user", "content": "..."},
        ],
        use_case="evaluation",   # "evaluation", "cheap", or None for default
        temperature=0.3,
        json_mode=True,
    )

The provider follows the resolved model name: "claude-*" models go to
Anthropic, everything else to the configured ai_provider (OpenAI by default).
"""

import logging
from enum import Enum

from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.config import settings

logger = logging.getLogger(__name__)


class AIProvider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


_ANTHROPIC_PREFIXES = ("claude-",)


def upstream_retry(label: str):
    """Shared retry policy for outbound AI calls: 3 tries, exponential backoff."""
    return retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type(Exception),
        before_sleep=lambda retry_state: logger.warning(
            "%s call failed (attempt %d), retrying: %s",
            label,
            retry_state.attempt_number,
            retry_state.outcome.exception(),
        ),
        reraise=True,
    )


def resolve_model(use_case: str | None) -> str:
    """Pick the model name based on the use case and config overrides."""
    if use_case == "evaluation" and settings.assessment_model:
        return settings.assessment_model
    if use_case == "cheap" and settings.cheap_model:
        return settings.cheap_model
    return settings.model_name


def _detect_provider(model: str) -> AIProvider:
    if model.lower().startswith(_ANTHROPIC_PREFIXES):
        return AIProvider.ANTHROPIC
    try:
        return AIProvider(settings.ai_provider.lower())
    except ValueError:
        return AIProvider.OPENAI


async def ai_chat(
    messages: list[dict],
    *,
    use_case: str | None = None,
    temperature: float = 0.7,
    json_mode: bool = False,
    max_tokens: int = 1024,
) -> str:
    """Send a chat completion and return the assistant text."""
    model = resolve_model(use_case)
    provider = _detect_provider(model)

    if provider == AIProvider.ANTHROPIC:
        return await _anthropic_chat(messages, model, temperature, json_mode, max_tokens)
    return await _openai_chat(messages, model, temperature, json_mode, max_tokens)


@upstream_retry("OpenAI")
async def _openai_chat(
    messages: list[dict],
    model: str,
    temperature: float,
    json_mode: bool,
    max_tokens: int,
) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=settings.api_key)
    kwargs: dict = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    response = await client.chat.completions.create(**kwargs)
    return response.choices[0].message.content or ""


@upstream_retry("Anthropic")
async def _anthropic_chat(
    messages: list[dict],
    model: str,
    temperature: float,
    json_mode: bool,
    max_tokens: int,
) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)

    # System prompt travels as a separate parameter
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    chat_messages = [
        {"role": m["role"], "content": m["content"]}
        for m in messages if m["role"] != "system"
    ]
    if json_mode:
        system_parts.append("You MUST respond with valid JSON only. No other text.")

    kwargs: dict = {
        "model": model,
        "messages": chat_messages,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if system_parts:
        kwargs["system"] = "\n".join(system_parts)

    response = await client.messages.create(**kwargs)
    return response.content[0].text
