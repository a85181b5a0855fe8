"""Tool dispatcher, per-run result cache, and the terminal submit tool.

Provides:
- ToolDispatcher: registers tools, dispatches calls by name
- ToolCache: memoizes successful results by (tool name, canonical JSON input)
- submit_release_notes_definition(): schema of the tool that ends a run

Handlers are async callables taking the tool input as keyword arguments and
returning plain text. A handler signals failure by raising ToolError; any
other exception is logged and converted to a ToolError.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from communique.errors import ToolError
from communique.providers.schemas import ToolDefinition

logger = logging.getLogger(__name__)

SUBMIT_TOOL = "submit_release_notes"

ToolHandler = Callable[..., Awaitable[str]]


# ---------------------------------------------------------------------------
# ToolDispatcher
# ---------------------------------------------------------------------------


class ToolDispatcher:
    """Registers tool handlers and dispatches tool calls from the model."""

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}
        self._definitions: dict[str, ToolDefinition] = {}
        self._advertised: set[str] = set()

    def register(
        self,
        name: str,
        handler: ToolHandler,
        schema: dict[str, Any],
        *,
        advertise: bool = True,
    ) -> None:
        """Register a tool handler with its JSON schema.

        The schema's "description" key doubles as the tool description.

        Tools registered with advertise=False stay dispatchable (so a call
        gets a descriptive error) but are left out of tool_definitions().
        """
        self._handlers[name] = handler
        self._definitions[name] = ToolDefinition(
            name=name,
            description=schema.get("description", ""),
            input_schema=schema,
        )
        if advertise:
            self._advertised.add(name)
        else:
            self._advertised.discard(name)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    async def dispatch(self, name: str, args: dict[str, Any]) -> str:
        """Run the named tool and return its text output.

        Raises ToolError for unknown tools and for any handler failure.
        """
        handler = self._handlers.get(name)
        if handler is None:
            raise ToolError(f"unknown tool: {name}")
        for param in self._definitions[name].input_schema.get("required", []):
            if args.get(param) is None:
                raise ToolError(f"{name}: missing '{param}' parameter")
        try:
            inspect.signature(handler).bind(**args)
        except TypeError as e:
            # Bad or missing arguments from the model
            raise ToolError(f"{name}: invalid arguments: {e}") from e
        try:
            return await handler(**args)
        except ToolError:
            raise
        except Exception as e:
            logger.exception("Tool dispatch error for %s", name)
            raise ToolError(f"{name}: {e}") from e

    def tool_definitions(self) -> list[ToolDefinition]:
        """Definitions of all advertised tools, in registration order."""
        return [d for name, d in self._definitions.items() if name in self._advertised]


# ---------------------------------------------------------------------------
# ToolCache
# ---------------------------------------------------------------------------


class ToolCache:
    """In-memory cache of tool results for a single agent run.

    Keyed by (tool name, canonical JSON of the input) so argument order in
    the model's JSON does not matter. Only successful results are stored;
    a key never changes value once inserted.
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], str] = {}

    @staticmethod
    def key(name: str, args: dict[str, Any]) -> tuple[str, str]:
        return name, json.dumps(args, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def get(self, name: str, args: dict[str, Any]) -> str | None:
        return self._entries.get(self.key(name, args))

    def insert(self, name: str, args: dict[str, Any], result: str) -> None:
        self._entries.setdefault(self.key(name, args), result)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Terminal submission
# ---------------------------------------------------------------------------


def submit_release_notes_definition() -> ToolDefinition:
    return ToolDefinition(
        name=SUBMIT_TOOL,
        description=(
            "Submit the final release notes. Call this exactly once when you are done "
            "researching and are ready to deliver the release notes."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "changelog": {
                    "type": "string",
                    "description": (
                        "Concise changelog entry using Keep a Changelog categories "
                        "(### Added, ### Fixed, etc). No version header, just the "
                        "categorized items."
                    ),
                },
                "release_title": {
                    "type": "string",
                    "description": "A catchy, concise title for the GitHub release (no # prefix).",
                },
                "release_body": {
                    "type": "string",
                    "description": (
                        "Detailed GitHub release notes in markdown: narrative summary, "
                        "optional Highlights, What's Changed, optional Breaking Changes, "
                        "optional New Contributors, and a Full Changelog link."
                    ),
                },
            },
            "required": ["changelog", "release_title", "release_body"],
        },
    )
