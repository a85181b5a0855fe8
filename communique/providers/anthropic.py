"""Anthropic Messages API provider.

Messages carry a list of typed content blocks (text / tool_use /
tool_result). All tool results for a turn go back in a single user
message, one tool_result block per call.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx

from communique.errors import ApiError
from communique.providers.base import LLMClient
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

DEFAULT_BASE_URL = "https://api.anthropic.com"

# Anthropic API version header
_API_VERSION = "2023-06-01"

_STOP_REASONS = {
    "tool_use": StopReason.TOOL_USE,
    "end_turn": StopReason.END_TURN,
    "max_tokens": StopReason.MAX_TOKENS,
}


class AnthropicClient(LLMClient):
    """Talks to POST /v1/messages with x-api-key auth."""

    name = "Anthropic API"

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: httpx.Timeout | None = None,
        retry: RetryConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            model=model,
            max_tokens=max_tokens,
            base_url=base_url,
            headers={
                "x-api-key": api_key,
                "anthropic-version": _API_VERSION,
                "content-type": "application/json",
            },
            timeout=timeout,
            retry=retry,
            http_client=http_client,
        )

    def new_conversation(self, user_message: str) -> Conversation:
        return Conversation(messages=[
            {"role": "user", "content": [{"type": "text", "text": user_message}]},
        ])

    def append_tool_results(
        self, conversation: Conversation, results: Sequence[ToolResult]
    ) -> None:
        blocks: list[dict[str, Any]] = []
        for r in results:
            block: dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": r.tool_call_id,
                "content": r.content,
            }
            if r.is_error:
                block["is_error"] = True
            blocks.append(block)
        conversation.messages.append({"role": "user", "content": blocks})

    def build_payload(
        self,
        system: str,
        conversation: Conversation,
        tools: Sequence[ToolDefinition],
    ) -> dict[str, Any]:
        """Build the Messages API request body."""
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "system": system,
            "messages": conversation.messages,
        }
        if tools:
            payload["tools"] = [
                {
                    "name": t.name,
                    "description": t.description,
                    "input_schema": t.input_schema,
                }
                for t in tools
            ]
        return payload

    async def send_turn(
        self,
        system: str,
        conversation: Conversation,
        tools: Sequence[ToolDefinition],
    ) -> TurnResponse:
        data = await self._post("/v1/messages", self.build_payload(system, conversation, tools))

        try:
            content: list[dict[str, Any]] = list(data["content"])
            usage = Usage(
                input_tokens=int(data["usage"]["input_tokens"]),
                output_tokens=int(data["usage"]["output_tokens"]),
            )
            tool_calls = [
                ToolCall(id=block["id"], name=block["name"], input=block.get("input") or {})
                for block in content
                if block.get("type") == "tool_use"
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ApiError(f"{self.name} response has unexpected shape: {e!r}") from e

        # Append the FULL assistant turn so tool_use ids stay paired
        conversation.messages.append({"role": "assistant", "content": content})

        text_parts = [b["text"] for b in content if b.get("type") == "text" and b.get("text")]
        stop_reason = _STOP_REASONS.get(data.get("stop_reason") or "", StopReason.UNKNOWN)

        logger.debug(
            "%s turn: stop_reason=%s tool_calls=%d",
            self.name, stop_reason, len(tool_calls),
        )
        return TurnResponse(
            tool_calls=tool_calls,
            text="\n".join(text_parts) if text_parts else None,
            stop_reason=stop_reason,
            usage=usage,
        )
