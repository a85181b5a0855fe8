"""Integration tests for AgentRunner.run().

A scripted FakeLLMClient stands in for the provider and a real
ToolDispatcher runs mock tool handlers. This covers usage accounting,
the per-run cache, submission validation, link-verification feedback,
the text fallback, and the iteration limit.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from communique.agent.links import LinkVerifier
from communique.agent.runner import AgentRunner, RunnerConfig, format_broken_links
from communique.agent.tools import ToolDispatcher, submit_release_notes_definition
from communique.errors import ApiError, IterationLimitError, ParseError, ToolError
from communique.providers.schemas import StopReason, Usage

from conftest import FakeLLMClient, submit_turn, text_turn, tool_turn

_PATH_SCHEMA = {
    "type": "object",
    "description": "Read a file",
    "properties": {"path": {"type": "string"}},
    "required": ["path"],
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _dispatcher(handler=None) -> tuple[ToolDispatcher, AsyncMock]:
    """Dispatcher with a single read_file tool backed by an AsyncMock."""
    handler = handler or AsyncMock(side_effect=lambda path: f"contents of {path}")
    dispatcher = ToolDispatcher()
    dispatcher.register("read_file", handler, _PATH_SCHEMA)
    return dispatcher, handler


def _runner(client, dispatcher, link_verifier=None, **config) -> AgentRunner:
    return AgentRunner(client, dispatcher, RunnerConfig(**config), link_verifier=link_verifier)


async def _run(runner: AgentRunner):
    return await runner.run("system", "write notes", [submit_release_notes_definition()])


def _verifier(*results: list[tuple[str, str]]) -> AsyncMock:
    verifier = AsyncMock(spec=LinkVerifier)
    verifier.verify.side_effect = list(results)
    return verifier


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class TestSubmission:
    @pytest.mark.asyncio
    async def test_immediate_submit(self):
        client = FakeLLMClient([submit_turn(title="Faster parsing", body="Details")])
        dispatcher, handler = _dispatcher()
        parsed = await _run(_runner(client, dispatcher))
        assert parsed.release_title == "Faster parsing"
        assert parsed.release_body == "Details"
        assert parsed.changelog == "### Added\n- Thing"
        assert client.turns == 1
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_usage_accumulates_across_turns(self):
        client = FakeLLMClient([
            tool_turn(("t1", "read_file", {"path": "a"}), usage=Usage(100, 50)),
            submit_turn(usage=Usage(150, 75)),
        ])
        dispatcher, _ = _dispatcher()
        parsed = await _run(_runner(client, dispatcher))
        assert parsed.usage == Usage(250, 125)
        assert parsed.usage.total_tokens == 375

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["changelog", "release_title", "release_body"])
    async def test_missing_field_is_parse_error(self, missing):
        turn = submit_turn()
        del turn.tool_calls[0].input[missing]
        client = FakeLLMClient([turn])
        dispatcher, _ = _dispatcher()
        with pytest.raises(ParseError, match=f"missing {missing}"):
            await _run(_runner(client, dispatcher))

    @pytest.mark.asyncio
    async def test_submit_wins_over_sibling_tool_calls(self):
        client = FakeLLMClient([
            tool_turn(
                ("t1", "read_file", {"path": "a"}),
                ("s1", "submit_release_notes", {
                    "changelog": "c", "release_title": "t", "release_body": "b",
                }),
            ),
        ])
        dispatcher, handler = _dispatcher()
        parsed = await _run(_runner(client, dispatcher))
        assert parsed.release_title == "t"
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_submission_answers_every_call(self):
        client = FakeLLMClient([
            tool_turn(
                ("t1", "read_file", {"path": "a"}),
                ("s1", "submit_release_notes", {
                    "changelog": "c",
                    "release_title": "t",
                    "release_body": "See https://example.com/missing",
                }),
                ("t2", "read_file", {"path": "b"}),
            ),
            submit_turn(body="Fixed", call_id="s2"),
        ])
        verifier = _verifier([("https://example.com/missing", "404")], [])
        dispatcher, handler = _dispatcher()
        parsed = await _run(_runner(client, dispatcher, link_verifier=verifier))

        assert parsed.release_body == "Fixed"
        handler.assert_not_awaited()
        (batch,) = client.tool_result_batches
        assert [r.tool_call_id for r in batch] == ["t1", "s1", "t2"]
        assert all(r.is_error for r in batch)
        assert "404" in batch[1].content
        assert batch[0].content == batch[2].content == "not executed: submission pending resubmit"


# ---------------------------------------------------------------------------
# Tool dispatch and caching
# ---------------------------------------------------------------------------


class TestToolDispatch:
    @pytest.mark.asyncio
    async def test_results_fed_back(self):
        client = FakeLLMClient([
            tool_turn(("t1", "read_file", {"path": "a.py"})),
            submit_turn(),
        ])
        dispatcher, _ = _dispatcher()
        await _run(_runner(client, dispatcher))
        (batch,) = client.tool_result_batches
        assert [(r.tool_call_id, r.content, r.is_error) for r in batch] == [
            ("t1", "contents of a.py", False),
        ]

    @pytest.mark.asyncio
    async def test_repeat_call_served_from_cache(self):
        client = FakeLLMClient([
            tool_turn(("t1", "read_file", {"path": "a.py"})),
            tool_turn(("t2", "read_file", {"path": "a.py"})),
            submit_turn(),
        ])
        dispatcher, handler = _dispatcher()
        await _run(_runner(client, dispatcher))
        assert handler.await_count == 1
        second = client.tool_result_batches[1][0]
        assert second.tool_call_id == "t2"
        assert second.content == "contents of a.py"

    @pytest.mark.asyncio
    async def test_errors_are_not_cached(self):
        handler = AsyncMock(side_effect=[ToolError("read_file: busy"), "ok now"])
        client = FakeLLMClient([
            tool_turn(("t1", "read_file", {"path": "a.py"})),
            tool_turn(("t2", "read_file", {"path": "a.py"})),
            submit_turn(),
        ])
        dispatcher, _ = _dispatcher(handler)
        await _run(_runner(client, dispatcher))
        assert handler.await_count == 2
        first, second = (b[0] for b in client.tool_result_batches)
        assert first.is_error
        assert first.content == "Error: read_file: busy"
        assert not second.is_error
        assert second.content == "ok now"

    @pytest.mark.asyncio
    async def test_unknown_tool_reported_to_model(self):
        client = FakeLLMClient([
            tool_turn(("t1", "delete_everything", {})),
            submit_turn(),
        ])
        dispatcher, _ = _dispatcher()
        await _run(_runner(client, dispatcher))
        (result,) = client.tool_result_batches[0]
        assert result.is_error
        assert "unknown tool: delete_everything" in result.content

    @pytest.mark.asyncio
    async def test_concurrent_results_keep_request_order(self):
        delays = {"slow": 0.05, "medium": 0.02, "fast": 0.0}

        async def read(path: str) -> str:
            await asyncio.sleep(delays[path])
            return path.upper()

        client = FakeLLMClient([
            tool_turn(
                ("t1", "read_file", {"path": "slow"}),
                ("t2", "read_file", {"path": "medium"}),
                ("t3", "read_file", {"path": "fast"}),
            ),
            submit_turn(),
        ])
        dispatcher, _ = _dispatcher(read)
        await _run(_runner(client, dispatcher))
        batch = client.tool_result_batches[0]
        assert [(r.tool_call_id, r.content) for r in batch] == [
            ("t1", "SLOW"), ("t2", "MEDIUM"), ("t3", "FAST"),
        ]

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        running = 0
        peak = 0

        async def read(path: str) -> str:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return path

        calls = [(f"t{i}", "read_file", {"path": str(i)}) for i in range(6)]
        client = FakeLLMClient([tool_turn(*calls), submit_turn()])
        dispatcher, _ = _dispatcher(read)
        await _run(_runner(client, dispatcher, max_concurrent_tools=2))
        assert peak == 2
        assert len(client.tool_result_batches[0]) == 6


# ---------------------------------------------------------------------------
# Link verification
# ---------------------------------------------------------------------------


class TestLinkVerification:
    @pytest.mark.asyncio
    async def test_healthy_links_accepted_first_time(self):
        client = FakeLLMClient([submit_turn(body="See https://example.com/ok")])
        verifier = _verifier([])
        dispatcher, _ = _dispatcher()
        parsed = await _run(_runner(client, dispatcher, link_verifier=verifier))
        assert client.turns == 1
        assert "https://example.com/ok" in parsed.release_body
        verifier.verify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_broken_link_triggers_one_corrective_turn(self):
        client = FakeLLMClient([
            submit_turn(body="See https://example.com/missing", call_id="s1"),
            submit_turn(body="Fixed", call_id="s2"),
        ])
        verifier = _verifier([("https://example.com/missing", "404")], [])
        dispatcher, _ = _dispatcher()
        parsed = await _run(_runner(client, dispatcher, link_verifier=verifier))

        assert parsed.release_body == "Fixed"
        assert client.turns == 2
        (feedback,) = client.tool_result_batches[0]
        assert feedback.tool_call_id == "s1"
        assert feedback.is_error
        assert "https://example.com/missing" in feedback.content
        assert "404" in feedback.content

    def test_feedback_lists_every_link(self):
        text = format_broken_links([("https://a.example", "404"), ("https://b.example", "timed out")])
        assert "- https://a.example (404)" in text
        assert "- https://b.example (timed out)" in text
        assert "submit_release_notes" in text


# ---------------------------------------------------------------------------
# Termination without submission
# ---------------------------------------------------------------------------


class TestTermination:
    @pytest.mark.asyncio
    async def test_iteration_limit(self):
        client = FakeLLMClient([tool_turn(("t", "read_file", {"path": "a"}))])
        dispatcher, _ = _dispatcher()
        with pytest.raises(IterationLimitError, match="exceeded 25"):
            await _run(_runner(client, dispatcher))
        assert client.turns == 25

    @pytest.mark.asyncio
    async def test_custom_iteration_limit(self):
        client = FakeLLMClient([tool_turn(("t", "read_file", {"path": "a"}))])
        dispatcher, _ = _dispatcher()
        with pytest.raises(IterationLimitError):
            await _run(_runner(client, dispatcher, max_iterations=3))
        assert client.turns == 3

    @pytest.mark.asyncio
    async def test_text_fallback_with_heading(self):
        client = FakeLLMClient([text_turn("# Big Release\n\nLots of changes.")])
        dispatcher, _ = _dispatcher()
        parsed = await _run(_runner(client, dispatcher))
        assert parsed.release_title == "Big Release"
        assert parsed.release_body == "Lots of changes."
        assert parsed.changelog == "Lots of changes."

    @pytest.mark.asyncio
    async def test_empty_text_is_parse_error(self):
        client = FakeLLMClient([text_turn(None)])
        dispatcher, _ = _dispatcher()
        with pytest.raises(ParseError, match="without calling submit_release_notes"):
            await _run(_runner(client, dispatcher))

    @pytest.mark.asyncio
    async def test_max_tokens_without_tools_is_api_error(self):
        client = FakeLLMClient([text_turn("truncated outp", StopReason.MAX_TOKENS)])
        dispatcher, _ = _dispatcher()
        with pytest.raises(ApiError, match="max_tokens"):
            await _run(_runner(client, dispatcher))
