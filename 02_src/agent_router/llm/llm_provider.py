"""LLM Provider implementation using Anthropic Claude API."""

import asyncio
import os
import time
from dataclasses import dataclass, field
from typing import Protocol

import anthropic

from ..config import get_llm_timeout
from ..errors import (
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from ..logging_config import get_logger
from ..models import EventType, TokenUsage
from ..tracker import get_active_trace

logger = get_logger(__name__)

FAST_MODEL = "claude-3-5-haiku-20241022"
REASONING_MODEL = "claude-3-5-sonnet-20241022"

AGENT_MODELS = {
    "supervisor": FAST_MODEL,
    "librarian": FAST_MODEL,
    "dojo": FAST_MODEL,
    "cost-guard": FAST_MODEL,
    "debugger": REASONING_MODEL,
}

PLACEHOLDER_KEYS = {"your-anthropic-api-key-here", "sk-ant-xxx"}

JSON_INSTRUCTION = (
    "Respond with a single valid JSON object only. "
    "Do not wrap it in markdown and do not add any text before or after it."
)


def model_for_agent(agent_name: str) -> str:
    """Pick the model an agent should run on; unknown agents get the fast model."""
    return AGENT_MODELS.get(agent_name, FAST_MODEL)


def has_valid_api_key(api_key: str | None) -> bool:
    return bool(api_key) and api_key not in PLACEHOLDER_KEYS and api_key.startswith("sk-")


@dataclass
class LLMCallOptions:
    temperature: float = 0.7
    max_tokens: int = 1024
    json_mode: bool = False
    timeout: float | None = None  # seconds; None -> ROUTING_TIMEOUT_SECONDS or 30


@dataclass
class LLMResponse:
    content: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str | None = None


class ILLMProvider(Protocol):
    """Abstraction for LLM access."""

    def has_credentials(self) -> bool:
        """Whether a usable API key is configured."""
        ...

    async def call(
        self,
        model: str,
        messages: list[dict],  # [{"role": "user", "content": "..."}]
        options: LLMCallOptions | None = None,
    ) -> LLMResponse:
        """Generate a completion. Raises ProviderError subclasses."""
        ...


class LLMProvider:
    """Anthropic Claude API provider.

    Constructing without a key is allowed: callers check has_credentials()
    and route by keyword instead.
    """

    def __init__(self, api_key: str | None = None):
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self._client: anthropic.AsyncAnthropic | None = None
        if has_valid_api_key(self._api_key):
            # No SDK-level retries: a single bounded attempt per call
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key, max_retries=0)

    def has_credentials(self) -> bool:
        return self._client is not None

    async def call(
        self,
        model: str,
        messages: list[dict],
        options: LLMCallOptions | None = None,
    ) -> LLMResponse:
        """Generate a completion with a hard timeout, logging to the active trace."""
        if self._client is None:
            raise ProviderAuthError("Anthropic client not initialized. Check ANTHROPIC_API_KEY.")

        options = options or LLMCallOptions()
        timeout = options.timeout or get_llm_timeout()
        system, chat = _split_system(messages)
        if options.json_mode:
            system = f"{system}\n\n{JSON_INSTRUCTION}" if system else JSON_INSTRUCTION

        request = {
            "model": model,
            "messages": chat,
            "max_tokens": options.max_tokens,
            "temperature": options.temperature,
        }
        if system:
            request["system"] = system

        tracer = get_active_trace()
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(**request),
                timeout=timeout,
            )
        except Exception as e:
            error = _translate_error(e, timeout)
            if tracer:
                tracer.log(
                    EventType.ERROR,
                    {"tool": "llm", "model": model, "provider": "anthropic"},
                    {"error": True},
                    {
                        "duration_ms": _elapsed_ms(started),
                        "error_message": str(error),
                    },
                )
            if error is e:
                raise
            raise error from e

        usage = TokenUsage(
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
        )
        content = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )

        if tracer:
            tracer.log(
                EventType.TOOL_INVOCATION,
                {
                    "tool": "llm",
                    "model": model,
                    "provider": "anthropic",
                    "message_count": len(messages),
                },
                {"success": True, "tokens": usage.total_tokens},
                {
                    "duration_ms": _elapsed_ms(started),
                    "token_count": usage.total_tokens,
                },
            )

        return LLMResponse(
            content=content,
            usage=usage,
            finish_reason=response.stop_reason,
        )


def _split_system(messages: list[dict]) -> tuple[str | None, list[dict]]:
    """Anthropic takes the system prompt separately from the turns."""
    system_parts = [m["content"] for m in messages if m.get("role") == "system"]
    chat = [
        {"role": m["role"], "content": m["content"]}
        for m in messages
        if m.get("role") != "system"
    ]
    return ("\n\n".join(system_parts) or None), chat


def _translate_error(error: Exception, timeout: float) -> ProviderError:
    if isinstance(error, ProviderError):
        return error
    if isinstance(error, (asyncio.TimeoutError, anthropic.APITimeoutError)):
        return ProviderTimeoutError(f"Request timed out after {timeout}s")
    if isinstance(error, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return ProviderAuthError(str(error))
    if isinstance(error, anthropic.RateLimitError):
        return ProviderRateLimitError(str(error))
    if isinstance(error, anthropic.APIStatusError):
        return ProviderError(f"LLM API error: {error}", status=error.status_code)
    return ProviderError(f"LLM API error: {error}")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)
