"""Git plumbing: repo discovery, tag ranges, and commit logs.

Commands run as asyncio subprocesses so repository tools can execute
concurrently with each other and with network calls.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

from communique.errors import GitError

logger = logging.getLogger(__name__)

_PR_NUMBER = re.compile(r"\(#(\d+)\)")
_REMOTE_PATTERNS = (
    re.compile(r"^git@[^:]+:(?P<path>.+?)(?:\.git)?/?$"),
    re.compile(r"^(?:https?|ssh|git)://(?:[^@/]+@)?[^/]+/(?P<path>.+?)(?:\.git)?/?$"),
)


async def run_command(
    *args: str,
    cwd: Path,
    check: bool = True,
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr).

    With check=True a non-zero exit raises GitError carrying stderr.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
        )
    except FileNotFoundError as e:
        raise GitError(f"{args[0]} not found: {e}") from e

    stdout, stderr = await proc.communicate()
    out = stdout.decode("utf-8", errors="replace")
    err = stderr.decode("utf-8", errors="replace")
    if check and proc.returncode != 0:
        raise GitError(f"{' '.join(args)}: {err.strip() or f'exit code {proc.returncode}'}")
    return proc.returncode or 0, out, err


async def git(repo_root: Path, *args: str) -> str:
    """Run git in repo_root and return stdout."""
    _, out, _ = await run_command("git", *args, cwd=repo_root)
    return out


async def repo_root(cwd: Path | None = None) -> Path:
    out = await git(cwd or Path.cwd(), "rev-parse", "--show-toplevel")
    return Path(out.strip())


def parse_owner_repo(url: str) -> str:
    """Turn a GitHub remote URL into ``owner/repo``."""
    url = url.strip()
    for pattern in _REMOTE_PATTERNS:
        match = pattern.match(url)
        if match:
            path = match.group("path")
            if path.count("/") == 1:
                return path
    raise GitError(f"cannot parse owner/repo from remote URL: {url}")


async def detect_remote(root: Path) -> str:
    out = await git(root, "remote", "get-url", "origin")
    return parse_owner_repo(out)


async def previous_tag(root: Path, current_tag: str) -> str:
    """The most recent tag reachable from current_tag's parent."""
    try:
        out = await git(root, "describe", "--tags", "--abbrev=0", f"{current_tag}^")
    except GitError as e:
        raise GitError(
            f"no tag before {current_tag}; pass --prev-tag explicitly ({e.message})"
        ) from e
    return out.strip()


async def log_between(root: Path, from_ref: str, to_ref: str) -> str:
    return await git(root, "log", "--oneline", "--no-decorate", f"{from_ref}..{to_ref}")


def extract_pr_numbers(log: str) -> list[int]:
    """PR numbers referenced as ``(#123)`` in commit subjects, ascending and unique."""
    return sorted({int(n) for n in _PR_NUMBER.findall(log)})
