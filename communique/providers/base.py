"""LLMClient interface shared by the Anthropic and OpenAI-compatible providers.

The agent loop depends only on this class. Each implementation owns an
httpx.AsyncClient, routes its request through retry_request(), and keeps
the Conversation in its own wire format.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import httpx

from communique.errors import ApiError, TransportError
from communique.providers.schemas import (
    Conversation,
    ToolDefinition,
    ToolResult,
    TurnResponse,
)
from communique.retry import RetryConfig, retry_request

logger = logging.getLogger(__name__)

USER_AGENT = "communique/0.1"


class LLMClient(ABC):
    """One model endpoint speaking one vendor protocol."""

    #: Label for logs and error messages
    name: str = "LLM API"

    def __init__(
        self,
        *,
        model: str,
        max_tokens: int,
        base_url: str,
        headers: dict[str, str],
        timeout: httpx.Timeout | None = None,
        retry: RetryConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self._retry = retry or RetryConfig()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers={"user-agent": USER_AGENT, **headers},
            timeout=timeout or httpx.Timeout(connect=10.0, read=300.0, write=10.0, pool=10.0),
        )

    async def close(self) -> None:
        """Close the underlying httpx client if this provider created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> LLMClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @abstractmethod
    def new_conversation(self, user_message: str) -> Conversation:
        """Start a conversation holding one user turn. No I/O."""

    @abstractmethod
    def append_tool_results(
        self, conversation: Conversation, results: Sequence[ToolResult]
    ) -> None:
        """Append tool outcomes in the provider's native message shape."""

    @abstractmethod
    async def send_turn(
        self,
        system: str,
        conversation: Conversation,
        tools: Sequence[ToolDefinition],
    ) -> TurnResponse:
        """Send the conversation, append the model's reply to it, and return it normalized."""

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST payload with retries and return the decoded JSON body.

        Raises TransportError when the network fails for good, ApiError on a
        non-success status or a body that is not a JSON object.
        """
        try:
            response = await retry_request(
                self.name,
                lambda: self._http.post(path, json=payload),
                self._retry,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{self.name} request failed: {e}") from e

        if not response.is_success:
            raise ApiError(
                f"{self.name} error ({response.status_code}): {_error_detail(response)}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ApiError(f"{self.name} returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ApiError(f"{self.name} returned unexpected body: {response.text[:500]}")
        return data


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error message from a vendor error body."""
    try:
        error = response.json().get("error", {})
        if isinstance(error, dict):
            return f"{error.get('type', 'unknown')} - {error.get('message', 'unknown error')}"
        return str(error)
    except (ValueError, AttributeError):
        return response.text[:500]
