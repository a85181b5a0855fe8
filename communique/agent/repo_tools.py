"""Repository tools: read_file, list_files, grep, git_show, get_commits.

Each tool runs against the repository root captured at registration time.
Subprocesses are asyncio-based so sibling tool calls in one turn overlap.
Failures raise ToolError with the tool name as prefix.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from communique.agent.tools import ToolDispatcher
from communique.errors import GitError, ToolError
from communique.git import run_command

logger = logging.getLogger(__name__)

# Limits
_MAX_FILE_CHARS = 100_000
_MAX_SHOW_CHARS = 50_000
_MAX_COMMITS = 200
_MAX_GREP_MATCHES = 50


def _truncate(text: str, limit: int, label: str) -> str:
    if len(text) > limit:
        return text[:limit] + f"...\n\n[{label} truncated at {limit // 1000}KB]"
    return text


def _validate_path(path_str: str, repo_root: Path) -> Path:
    """Resolve path_str inside repo_root.

    Raises ToolError if the resolved path escapes the repository.
    """
    root = repo_root.resolve()
    target = (root / path_str).resolve()
    if not target.is_relative_to(root):
        raise ToolError(f"read_file: path escapes repo root: {path_str}")
    return target


async def _git(repo_root: Path, tool: str, *args: str) -> str:
    try:
        _, out, _ = await run_command("git", *args, cwd=repo_root)
    except GitError as e:
        raise ToolError(f"{tool}: {e.message}") from e
    return out


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------


async def read_file_tool(path: str, *, _repo_root: Path) -> str:
    """Read a repository file, truncated at 100KB."""
    target = _validate_path(path, _repo_root)
    try:
        contents = await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")
    except OSError as e:
        raise ToolError(f"read_file: {path}: {e}") from e
    return _truncate(contents, _MAX_FILE_CHARS, "file")


async def list_files_tool(pattern: str | None = None, *, _repo_root: Path) -> str:
    args = ["ls-files"]
    if pattern:
        args += ["--", pattern]
    return await _git(_repo_root, "list_files", *args)


async def grep_tool(pattern: str, glob: str | None = None, *, _repo_root: Path) -> str:
    """Search with ripgrep. rg exits 1 for "no matches", >= 2 for real errors."""
    args = ["rg", "--line-number", "--no-heading", "--max-count", str(_MAX_GREP_MATCHES)]
    if glob:
        args += ["--glob", glob]
    args += ["--", pattern, "."]
    try:
        code, out, err = await run_command(*args, cwd=_repo_root, check=False)
    except GitError as e:
        raise ToolError(f"grep: {e.message}") from e
    if code >= 2:
        raise ToolError(f"grep: {err.strip()}")
    return out or "No matches found."


async def git_show_tool(ref: str, *, _repo_root: Path) -> str:
    out = await _git(_repo_root, "git_show", "show", "--stat", "--patch", ref, "--")
    return _truncate(out, _MAX_SHOW_CHARS, "output")


async def get_commits_tool(
    to: str = "HEAD",
    path: str | None = None,
    *,
    _repo_root: Path,
    **kwargs: Any,
) -> str:
    # "from" is a keyword, so it arrives through **kwargs
    from_ref = kwargs.pop("from", None)
    if kwargs:
        raise ToolError(f"get_commits: unexpected arguments: {', '.join(sorted(kwargs))}")

    args = [
        "log",
        "--pretty=format:%h %an %ad %s",
        "--date=short",
        "-n",
        str(_MAX_COMMITS),
        f"{from_ref}..{to}" if from_ref else to,
    ]
    if path:
        args += ["--", path]
    out = await _git(_repo_root, "get_commits", *args)
    return out or "No commits found."


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------

_READ_FILE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Read the contents of a file in the repository. Path is relative to the repo root.",
    "properties": {
        "path": {"type": "string", "description": "File path relative to repo root"},
    },
    "required": ["path"],
}

_LIST_FILES_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "List files tracked by git in the repository. Optionally filter by a glob pattern.",
    "properties": {
        "pattern": {
            "type": "string",
            "description": "Optional glob pattern to filter files (e.g. 'src/**/*.py')",
        },
    },
}

_GREP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Search file contents using ripgrep (rg). Returns matching lines with "
        "file paths and line numbers."
    ),
    "properties": {
        "pattern": {"type": "string", "description": "Regex pattern to search for"},
        "glob": {
            "type": "string",
            "description": "Optional file glob to restrict search (e.g. '*.py')",
        },
    },
    "required": ["pattern"],
}

_GIT_SHOW_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Show full details of a commit (message, author, diff).",
    "properties": {
        "ref": {"type": "string", "description": "Commit SHA, tag, branch, or other git ref"},
    },
    "required": ["ref"],
}

_GET_COMMITS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "List commits between refs or for a specific file path.",
    "properties": {
        "from": {
            "type": "string",
            "description": "Start ref (exclusive). If omitted, shows recent commits.",
        },
        "to": {"type": "string", "description": "End ref (inclusive). Defaults to HEAD."},
        "path": {"type": "string", "description": "Filter to commits touching this path"},
    },
}


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register_repo_tools(dispatcher: ToolDispatcher, repo_root: Path) -> None:
    """Register repository tools with the dispatcher.

    Creates closure wrappers that inject repo_root.
    """

    async def _read_file(path: str) -> str:
        return await read_file_tool(path, _repo_root=repo_root)

    async def _list_files(pattern: str | None = None) -> str:
        return await list_files_tool(pattern, _repo_root=repo_root)

    async def _grep(pattern: str, glob: str | None = None) -> str:
        return await grep_tool(pattern, glob, _repo_root=repo_root)

    async def _git_show(ref: str) -> str:
        return await git_show_tool(ref, _repo_root=repo_root)

    async def _get_commits(**kwargs: Any) -> str:
        return await get_commits_tool(_repo_root=repo_root, **kwargs)

    dispatcher.register("read_file", _read_file, _READ_FILE_SCHEMA)
    dispatcher.register("list_files", _list_files, _LIST_FILES_SCHEMA)
    dispatcher.register("grep", _grep, _GREP_SCHEMA)
    dispatcher.register("git_show", _git_show, _GIT_SHOW_SCHEMA)
    dispatcher.register("get_commits", _get_commits, _GET_COMMITS_SCHEMA)
