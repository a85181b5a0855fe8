"""Shared fixtures: a scripted LLM client and throwaway git repositories."""

import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest

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

# ---------------------------------------------------------------------------
# Scripted LLM client
# ---------------------------------------------------------------------------


class FakeLLMClient(LLMClient):
    """LLMClient that replays a fixed list of TurnResponses.

    Records the opening user message and every batch of tool results it
    is handed so tests can assert on what the runner fed the model. Once
    the script runs out it keeps repeating the last response.
    """

    name = "Fake API"

    def __init__(self, responses: Sequence[TurnResponse]) -> None:
        # No HTTP client is ever created
        self._responses = list(responses)
        self.turns = 0
        self.tool_result_batches: list[list[ToolResult]] = []
        self.tools_seen: list[list[str]] = []
        self.user_messages: list[str] = []

    async def close(self) -> None:
        pass

    def new_conversation(self, user_message: str) -> Conversation:
        self.user_messages.append(user_message)
        return Conversation(messages=[{"role": "user", "content": user_message}])

    def append_tool_results(
        self, conversation: Conversation, results: Sequence[ToolResult]
    ) -> None:
        self.tool_result_batches.append(list(results))
        conversation.messages.append({"role": "tool", "results": list(results)})

    async def send_turn(
        self,
        system: str,
        conversation: Conversation,
        tools: Sequence[ToolDefinition],
    ) -> TurnResponse:
        self.tools_seen.append([t.name for t in tools])
        index = min(self.turns, len(self._responses) - 1)
        self.turns += 1
        response = self._responses[index]
        conversation.messages.append({"role": "assistant", "turn": self.turns})
        return response


def tool_turn(*calls: tuple[str, str, dict], usage: Usage | None = None) -> TurnResponse:
    """TurnResponse requesting (id, name, input) tool calls."""
    return TurnResponse(
        tool_calls=[ToolCall(id=i, name=n, input=a) for i, n, a in calls],
        stop_reason=StopReason.TOOL_USE,
        usage=usage or Usage(10, 5),
    )


def submit_turn(
    changelog: str = "### Added\n- Thing",
    title: str = "A release",
    body: str = "Body text",
    call_id: str = "submit_1",
    usage: Usage | None = None,
) -> TurnResponse:
    return tool_turn(
        (call_id, "submit_release_notes", {
            "changelog": changelog,
            "release_title": title,
            "release_body": body,
        }),
        usage=usage,
    )


def text_turn(text: str | None, stop_reason: StopReason = StopReason.END_TURN) -> TurnResponse:
    return TurnResponse(text=text, stop_reason=stop_reason, usage=Usage(10, 5))


# ---------------------------------------------------------------------------
# Git repositories
# ---------------------------------------------------------------------------

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
requires_rg = pytest.mark.skipif(shutil.which("rg") is None, reason="ripgrep not installed")


def _run_git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout


class TempRepo:
    """A real git repository under tmp_path with helpers to commit and tag."""

    def __init__(self, root: Path) -> None:
        self.root = root
        _run_git(root, "init", "-q", "-b", "main")
        _run_git(root, "config", "user.email", "dev@example.com")
        _run_git(root, "config", "user.name", "Dev Example")
        _run_git(root, "config", "commit.gpgsign", "false")
        _run_git(root, "config", "tag.gpgsign", "false")

    def write(self, path: str, content: str) -> None:
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def commit(self, message: str, files: dict[str, str] | None = None) -> str:
        for path, content in (files or {}).items():
            self.write(path, content)
        _run_git(self.root, "add", "-A")
        _run_git(self.root, "commit", "-q", "--allow-empty", "-m", message)
        return _run_git(self.root, "rev-parse", "--short", "HEAD").strip()

    def tag(self, name: str) -> None:
        _run_git(self.root, "tag", name)

    def git(self, *args: str) -> str:
        return _run_git(self.root, *args)


@pytest.fixture
def temp_repo(tmp_path: Path) -> TempRepo:
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    root = tmp_path / "repo"
    root.mkdir()
    return TempRepo(root)


@pytest.fixture
def tagged_repo(temp_repo: TempRepo) -> TempRepo:
    """Two tags with PR-style commits between them."""
    temp_repo.commit("Initial commit", {"README.md": "# Demo\n"})
    temp_repo.tag("v1.0.0")
    temp_repo.commit("Add parser (#12)", {"src/parser.py": "def parse(text):\n    return text\n"})
    temp_repo.commit("Fix crash on empty input (#15)", {"src/parser.py": "def parse(text):\n    return text or ''\n"})
    temp_repo.commit("Docs tweak (#12)", {"README.md": "# Demo\n\nParses things.\n"})
    temp_repo.tag("v1.1.0")
    return temp_repo
