"""LLM module."""

from .llm_provider import (
    ILLMProvider,
    LLMCallOptions,
    LLMProvider,
    LLMResponse,
    has_valid_api_key,
    model_for_agent,
)

__all__ = [
    "ILLMProvider",
    "LLMCallOptions",
    "LLMProvider",
    "LLMResponse",
    "has_valid_api_key",
    "model_for_agent",
]
