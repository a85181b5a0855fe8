"""GitHub tools for the agent: get_pr, get_pr_diff, get_issue.

Registered whether or not a GitHub client exists. Without one they are
hidden from the model and, if called anyway, fail with an explicit
"requires GITHUB_TOKEN" error instead of returning empty data.
"""

from __future__ import annotations

import logging
from typing import Any

from communique.agent.tools import ToolDispatcher
from communique.errors import GitHubError, ToolError
from communique.github import GitHubClient, Issue, PullRequest

logger = logging.getLogger(__name__)


def _require(github: GitHubClient | None, tool: str) -> GitHubClient:
    if github is None:
        raise ToolError(f"{tool} requires GITHUB_TOKEN to be set")
    return github


def _labels(item: PullRequest | Issue) -> str:
    return ", ".join(label.name for label in item.labels)


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------


async def get_pr_tool(number: int, *, _github: GitHubClient | None) -> str:
    github = _require(_github, "get_pr")
    try:
        pr = await github.get_pr(int(number))
    except GitHubError as e:
        raise ToolError(f"get_pr: {e.message}") from e
    return (
        f"PR #{pr.number}: {pr.title}\n"
        f"Author: @{pr.user.login}\n"
        f"Labels: {_labels(pr)}\n\n"
        f"{pr.body or '(no description)'}"
    )


async def get_pr_diff_tool(number: int, *, _github: GitHubClient | None) -> str:
    github = _require(_github, "get_pr_diff")
    try:
        return await github.get_pr_diff(int(number))
    except GitHubError as e:
        raise ToolError(f"get_pr_diff: {e.message}") from e


async def get_issue_tool(number: int, *, _github: GitHubClient | None) -> str:
    github = _require(_github, "get_issue")
    try:
        issue = await github.get_issue(int(number))
    except GitHubError as e:
        raise ToolError(f"get_issue: {e.message}") from e
    return (
        f"Issue #{issue.number}: {issue.title}\n"
        f"State: {issue.state}\n"
        f"Author: @{issue.user.login}\n"
        f"Labels: {_labels(issue)}\n\n"
        f"{issue.body or '(no description)'}"
    )


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------


def _number_schema(description: str, what: str) -> dict[str, Any]:
    return {
        "type": "object",
        "description": description,
        "properties": {"number": {"type": "integer", "description": f"{what} number"}},
        "required": ["number"],
    }


_GET_PR_SCHEMA = _number_schema(
    "Fetch details of a GitHub pull request (title, body, labels, author).", "PR"
)
_GET_PR_DIFF_SCHEMA = _number_schema("Fetch the diff of a GitHub pull request.", "PR")
_GET_ISSUE_SCHEMA = _number_schema(
    "Fetch details of a GitHub issue (title, body, labels, state, author).", "Issue"
)


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register_github_tools(dispatcher: ToolDispatcher, github: GitHubClient | None) -> None:
    """Register GitHub tools, advertised only when a client is configured."""
    advertise = github is not None
    if not advertise:
        logger.info("GITHUB_TOKEN not set -- GitHub tools unavailable")

    async def _get_pr(number: int) -> str:
        return await get_pr_tool(number, _github=github)

    async def _get_pr_diff(number: int) -> str:
        return await get_pr_diff_tool(number, _github=github)

    async def _get_issue(number: int) -> str:
        return await get_issue_tool(number, _github=github)

    dispatcher.register("get_pr", _get_pr, _GET_PR_SCHEMA, advertise=advertise)
    dispatcher.register("get_pr_diff", _get_pr_diff, _GET_PR_DIFF_SCHEMA, advertise=advertise)
    dispatcher.register("get_issue", _get_issue, _GET_ISSUE_SCHEMA, advertise=advertise)
