"""Vendor-neutral data contract between the agent loop and LLM providers.

Providers translate their wire formats into these types. The Conversation
is the one exception: its messages stay in the owning provider's native
shape and nothing outside that provider reads them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class StopReason(StrEnum):
    TOOL_USE = "tool_use"
    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Usage:
    """Token counts. Adds componentwise; Usage() is the zero value."""

    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: Usage) -> Usage:
        if not isinstance(other, Usage):
            return NotImplemented
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    input: dict[str, Any]


@dataclass(frozen=True)
class ToolResult:
    tool_call_id: str
    content: str
    is_error: bool = False


@dataclass
class TurnResponse:
    """One normalized model turn."""

    tool_calls: list[ToolCall] = field(default_factory=list)
    text: str | None = None
    stop_reason: StopReason = StopReason.UNKNOWN
    usage: Usage = field(default_factory=Usage)


@dataclass
class Conversation:
    """Append-only, provider-native message history for one run."""

    messages: list[dict[str, Any]] = field(default_factory=list)
