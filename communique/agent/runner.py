"""Agent runner -- drives the tool-calling conversation that writes release notes.

Each iteration sends one turn through the LLMClient, then either accepts a
submit_release_notes call (after link verification), falls back to parsing
trailing text, or dispatches the requested tools and feeds the results
back. Tool results are memoized per run in a ToolCache.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

from communique.agent.links import LinkVerifier
from communique.agent.tools import SUBMIT_TOOL, ToolCache, ToolDispatcher
from communique.errors import ApiError, IterationLimitError, ParseError, ToolError
from communique.output import ParsedOutput, parse_submission, parse_text_fallback
from communique.providers.base import LLMClient
from communique.providers.schemas import (
    StopReason,
    ToolCall,
    ToolDefinition,
    ToolResult,
    TurnResponse,
    Usage,
)

logger = logging.getLogger(__name__)

MAX_ITERATIONS = 25
MAX_CONCURRENT_TOOLS = 8

_NOT_EXECUTED = "not executed: submission pending resubmit"


@dataclass(frozen=True)
class RunnerConfig:
    """Loop limits. Injected so tests and callers can tune them."""

    max_iterations: int = MAX_ITERATIONS
    max_concurrent_tools: int = MAX_CONCURRENT_TOOLS


def format_broken_links(broken: Sequence[tuple[str, str]]) -> str:
    """Corrective feedback for a submission that contains broken links."""
    lines = [f"- {url} ({reason})" for url, reason in broken]
    return (
        "The following links in your release notes are broken:\n"
        + "\n".join(lines)
        + "\n\nRemove or fix these links and call submit_release_notes again."
    )


def _resubmit_results(
    calls: Sequence[ToolCall],
    submission: ToolCall,
    broken: Sequence[tuple[str, str]],
) -> list[ToolResult]:
    """Answer every call of a rejected submission turn, in request order.

    Sibling calls are not executed but still need a result each.
    """
    return [
        ToolResult(submission.id, format_broken_links(broken), is_error=True)
        if call is submission
        else ToolResult(call.id, _NOT_EXECUTED, is_error=True)
        for call in calls
    ]


class AgentRunner:
    """Runs one release-notes generation against a provider and a tool set.

    The runner holds no per-run state: the Conversation, ToolCache, and
    Usage total live inside run(), so one runner may serve several runs.
    """

    def __init__(
        self,
        client: LLMClient,
        dispatcher: ToolDispatcher,
        config: RunnerConfig | None = None,
        link_verifier: LinkVerifier | None = None,
    ) -> None:
        self._client = client
        self._dispatcher = dispatcher
        self._config = config or RunnerConfig()
        self._link_verifier = link_verifier

    async def run(
        self,
        system: str,
        user_message: str,
        tools: Sequence[ToolDefinition],
    ) -> ParsedOutput:
        """Run the agent loop until the model submits release notes.

        Steps per iteration:
        1. send_turn() and add its usage to the running total
        2. submit_release_notes present -> validate, verify links, return
           (broken links -> corrective tool error, next iteration)
        3. no tool calls and end_turn -> parse trailing text as a fallback
        4. otherwise dispatch tool calls (cache-aware, concurrent) and loop

        Raises:
            ParseError: invalid submission, or the model stopped without one
            ApiError / TransportError: provider failure
            IterationLimitError: no submission within max_iterations
        """
        conversation = self._client.new_conversation(user_message)
        cache = ToolCache()
        usage = Usage()
        max_iterations = self._config.max_iterations
        semaphore = asyncio.Semaphore(self._config.max_concurrent_tools)

        for iteration in range(1, max_iterations + 1):
            logger.info("agent iteration %d/%d", iteration, max_iterations)
            response = await self._client.send_turn(system, conversation, tools)
            usage = usage + response.usage
            logger.info(
                "usage: %d input, %d output tokens",
                response.usage.input_tokens,
                response.usage.output_tokens,
            )

            submission = next((c for c in response.tool_calls if c.name == SUBMIT_TOOL), None)
            if submission is not None:
                parsed = parse_submission(submission.input, usage)
                broken = await self._broken_links(parsed)
                if not broken:
                    return parsed
                logger.warning("Submission has %d broken link(s), asking for a fix", len(broken))
                self._client.append_tool_results(
                    conversation, _resubmit_results(response.tool_calls, submission, broken)
                )
                continue

            if not response.tool_calls:
                return self._finish_without_submit(response, usage)

            results = await self._dispatch_all(response.tool_calls, cache, semaphore)
            self._client.append_tool_results(conversation, results)

        raise IterationLimitError(f"agent loop exceeded {max_iterations} iterations")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _finish_without_submit(self, response: TurnResponse, usage: Usage) -> ParsedOutput:
        if response.stop_reason != StopReason.END_TURN:
            raise ApiError(
                f"model stopped ({response.stop_reason}) without calling {SUBMIT_TOOL}"
            )
        parsed = parse_text_fallback(response.text, usage)
        if parsed is None:
            raise ParseError(f"model finished without calling {SUBMIT_TOOL}")
        logger.warning("Model did not call %s, using its text output", SUBMIT_TOOL)
        return parsed

    async def _broken_links(self, parsed: ParsedOutput) -> list[tuple[str, str]]:
        if self._link_verifier is None:
            return []
        return await self._link_verifier.verify(parsed.texts())

    async def _dispatch_all(
        self,
        calls: Sequence[ToolCall],
        cache: ToolCache,
        semaphore: asyncio.Semaphore,
    ) -> list[ToolResult]:
        """Resolve every call, returning results in the order the model asked.

        Cache hits are answered without running anything; misses run
        concurrently and successful ones are added to the cache.
        """
        results: list[ToolResult | None] = [None] * len(calls)
        misses: list[int] = []
        for index, call in enumerate(calls):
            cached = cache.get(call.name, call.input)
            if cached is not None:
                logger.info("tool %s: cache hit", call.name)
                results[index] = ToolResult(call.id, cached)
            else:
                misses.append(index)

        outcomes = await asyncio.gather(
            *(self._run_tool(calls[i], semaphore) for i in misses)
        )
        for index, result in zip(misses, outcomes):
            if not result.is_error:
                cache.insert(calls[index].name, calls[index].input, result.content)
            results[index] = result

        return [r for r in results if r is not None]

    async def _run_tool(self, call: ToolCall, semaphore: asyncio.Semaphore) -> ToolResult:
        async with semaphore:
            logger.info("calling tool: %s", call.name)
            start_time = time.monotonic()
            try:
                output = await self._dispatcher.dispatch(call.name, call.input)
            except ToolError as e:
                logger.info("tool %s error: %s", call.name, e)
                return ToolResult(call.id, f"Error: {e}", is_error=True)
            duration_ms = int((time.monotonic() - start_time) * 1000)
            logger.info("tool %s: %d bytes in %dms", call.name, len(output), duration_ms)
            return ToolResult(call.id, output)
