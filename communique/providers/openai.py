"""OpenAI-compatible Chat Completions provider.

Works with api.openai.com and with local or proxy servers that implement
POST /chat/completions. Tool invocations arrive as message.tool_calls with
JSON-string arguments; each result goes back as its own role="tool"
message.
"""

from __future__ import annotations

import json
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

DEFAULT_BASE_URL = "https://api.openai.com/v1"

_STOP_REASONS = {
    "tool_calls": StopReason.TOOL_USE,
    "stop": StopReason.END_TURN,
    "length": StopReason.MAX_TOKENS,
}


class OpenAIClient(LLMClient):
    """Talks to POST /chat/completions with optional Bearer auth."""

    name = "OpenAI API"

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
        # Local servers often run without auth
        headers = {"content-type": "application/json"}
        if api_key:
            headers["authorization"] = f"Bearer {api_key}"
        super().__init__(
            model=model,
            max_tokens=max_tokens,
            base_url=base_url.rstrip("/") + "/",
            headers=headers,
            timeout=timeout,
            retry=retry,
            http_client=http_client,
        )

    def new_conversation(self, user_message: str) -> Conversation:
        return Conversation(messages=[{"role": "user", "content": user_message}])

    def append_tool_results(
        self, conversation: Conversation, results: Sequence[ToolResult]
    ) -> None:
        for r in results:
            conversation.messages.append({
                "role": "tool",
                "tool_call_id": r.tool_call_id,
                "content": r.content,
            })

    def build_payload(
        self,
        system: str,
        conversation: Conversation,
        tools: Sequence[ToolDefinition],
    ) -> dict[str, Any]:
        """Build the Chat Completions request body.

        The system prompt travels as a leading system message and is not
        stored in the conversation itself.
        """
        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "system", "content": system}, *conversation.messages],
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.input_schema,
                    },
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
        data = await self._post("chat/completions", self.build_payload(system, conversation, tools))

        try:
            choices = data["choices"]
            if not choices:
                raise ApiError(f"{self.name} returned no choices")
            choice = choices[0]
            message = choice["message"]
            raw_calls = message.get("tool_calls") or []
            tool_calls = [
                ToolCall(
                    id=c["id"],
                    name=c["function"]["name"],
                    input=_parse_arguments(c["function"].get("arguments")),
                )
                for c in raw_calls
            ]
            raw_usage = data.get("usage") or {}
            usage = Usage(
                input_tokens=int(raw_usage.get("prompt_tokens", 0)),
                output_tokens=int(raw_usage.get("completion_tokens", 0)),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ApiError(f"{self.name} response has unexpected shape: {e!r}") from e

        assistant: dict[str, Any] = {"role": "assistant"}
        text = message.get("content")
        if text is not None:
            assistant["content"] = text
        if raw_calls:
            assistant["tool_calls"] = [
                {
                    "id": c["id"],
                    "type": "function",
                    "function": {
                        "name": c["function"]["name"],
                        "arguments": c["function"].get("arguments") or "{}",
                    },
                }
                for c in raw_calls
            ]
        conversation.messages.append(assistant)

        stop_reason = _STOP_REASONS.get(choice.get("finish_reason") or "", StopReason.UNKNOWN)
        logger.debug(
            "%s turn: stop_reason=%s tool_calls=%d",
            self.name, stop_reason, len(tool_calls),
        )
        return TurnResponse(
            tool_calls=tool_calls,
            text=text or None,
            stop_reason=stop_reason,
            usage=usage,
        )


def _parse_arguments(arguments: str | None) -> dict[str, Any]:
    """Decode a function-call arguments string. Malformed JSON becomes {}."""
    if not arguments:
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed tool arguments: %.200s", arguments)
        return {}
    return parsed if isinstance(parsed, dict) else {}
