"""LLM providers -- one interface, two wire protocols.

Public API:
    LLMClient       - Abstract provider used by the agent loop
    AnthropicClient - Anthropic Messages API
    OpenAIClient    - OpenAI-compatible Chat Completions API
    build_client    - Pick and construct a provider from Settings
    detect_provider - Infer the provider from a model name
"""

from __future__ import annotations

import logging
from typing import Literal

import httpx

from communique.config import Settings
from communique.errors import ConfigError
from communique.providers import anthropic, openai
from communique.providers.anthropic import AnthropicClient
from communique.providers.base import LLMClient
from communique.providers.openai import OpenAIClient
from communique.providers.schemas import (
    Conversation,
    StopReason,
    ToolCall,
    ToolDefinition,
    ToolResult,
    TurnResponse,
    Usage,
)
from communique.retry import RetryConfig

logger = logging.getLogger(__name__)

Provider = Literal["anthropic", "openai"]


def detect_provider(model: str) -> Provider:
    """``claude*`` models go to Anthropic, everything else is OpenAI-compatible."""
    return "anthropic" if model.startswith("claude") else "openai"


def build_client(settings: Settings) -> LLMClient:
    """Construct the provider selected by settings (or detected from the model)."""
    provider = settings.provider or detect_provider(settings.model)
    timeout = httpx.Timeout(
        connect=settings.api_timeout_connect,
        read=settings.api_timeout_read,
        write=10.0,
        pool=10.0,
    )
    retry = RetryConfig(
        max_retries=settings.retry_max_retries,
        initial_delay=settings.retry_initial_delay,
        max_delay=settings.retry_max_delay,
    )
    logger.info("provider: %s, model: %s", provider, settings.model)

    if provider == "anthropic":
        if not settings.anthropic_api_key:
            raise ConfigError("ANTHROPIC_API_KEY not set")
        return AnthropicClient(
            settings.anthropic_api_key,
            settings.model,
            settings.max_tokens,
            settings.base_url or anthropic.DEFAULT_BASE_URL,
            timeout=timeout,
            retry=retry,
        )

    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set -- sending unauthenticated requests")
    return OpenAIClient(
        settings.openai_api_key,
        settings.model,
        settings.max_tokens,
        settings.base_url or openai.DEFAULT_BASE_URL,
        timeout=timeout,
        retry=retry,
    )


__all__ = [
    "AnthropicClient",
    "Conversation",
    "LLMClient",
    "OpenAIClient",
    "Provider",
    "StopReason",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "TurnResponse",
    "Usage",
    "build_client",
    "detect_provider",
]
