"""Generate workflow: repository context -> agent run -> publish.

Wires Settings, git plumbing, the GitHub client, prompts, the tool
dispatcher, and AgentRunner together for one `communique generate` call.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from communique import git
from communique.agent.github_tools import register_github_tools
from communique.agent.links import LinkVerifier
from communique.agent.repo_tools import register_repo_tools
from communique.agent.runner import AgentRunner, RunnerConfig
from communique.agent.tools import ToolDispatcher, submit_release_notes_definition
from communique.config import Settings, load_settings
from communique.errors import ConfigError, GitHubError
from communique.github import GitHubClient
from communique.output import ParsedOutput, render
from communique.prompt import UserPromptContext, system_prompt, user_prompt
from communique.providers import LLMClient, build_client

logger = logging.getLogger(__name__)

_RECENT_RELEASES = 2
CHANGELOG_FILENAME = "CHANGELOG.md"


@dataclass
class GenerateOptions:
    tag: str
    prev_tag: str | None = None
    github_release: bool = False
    concise: bool = False
    dry_run: bool = False
    repo: str | None = None
    model: str | None = None
    max_tokens: int | None = None
    provider: str | None = None
    base_url: str | None = None
    output: Path | None = None
    config: Path | None = None


@dataclass
class Context:
    repo_root: Path
    owner_repo: str
    tag: str
    prev_tag: str
    settings: Settings
    github: GitHubClient | None


async def gather_context(opts: GenerateOptions, cwd: Path | None = None) -> Context:
    root = await git.repo_root(cwd)
    logger.info("repo root: %s", root)

    settings = load_settings(
        root,
        opts.config,
        repo=opts.repo,
        model=opts.model,
        max_tokens=opts.max_tokens,
        provider=opts.provider,
        base_url=opts.base_url,
    )
    if opts.github_release and not settings.github_token:
        raise ConfigError("GITHUB_TOKEN is required for --github-release")

    owner_repo = settings.repo or await git.detect_remote(root)
    prev_tag = opts.prev_tag or await git.previous_tag(root, opts.tag)
    logger.info("repo: %s, range: %s..%s", owner_repo, prev_tag, opts.tag)

    github = GitHubClient(settings.github_token, owner_repo) if settings.github_token else None
    return Context(
        repo_root=root,
        owner_repo=owner_repo,
        tag=opts.tag,
        prev_tag=prev_tag,
        settings=settings,
        github=github,
    )


def read_changelog_entry(repo_root: Path, tag: str) -> str | None:
    """The CHANGELOG.md section for tag, if the file has one.

    Matches `## [1.2.0]` or `## 1.2.0` (a leading "v" on the tag is
    dropped) and runs to the next `## ` heading.
    """
    try:
        contents = (repo_root / CHANGELOG_FILENAME).read_text(encoding="utf-8")
    except OSError:
        return None

    version = tag.removeprefix("v")
    start = contents.find(f"## [{version}]")
    if start == -1:
        start = contents.find(f"## {version}")
    if start == -1:
        return None

    end = contents.find("\n## ", start + 3)
    if end == -1:
        end = len(contents)
    return contents[start:end].strip()


async def _recent_releases(ctx: Context) -> list[tuple[str, str]]:
    """Bodies of the latest releases other than ctx.tag, for style matching."""
    if ctx.github is None or not ctx.settings.match_style:
        return []
    try:
        releases = await ctx.github.list_recent_releases(_RECENT_RELEASES + 1)
    except GitHubError as e:
        logger.info("failed to fetch recent releases for style matching: %s", e)
        return []
    return [
        (r.tag_name, r.body)
        for r in releases
        if r.tag_name != ctx.tag and r.body
    ][:_RECENT_RELEASES]


async def _existing_release(ctx: Context) -> str | None:
    if ctx.github is None:
        return None
    release = await ctx.github.get_release_by_tag(ctx.tag)
    return release.body if release else None


async def generate_notes(
    ctx: Context,
    client: LLMClient,
    dry_run: bool = False,
) -> ParsedOutput:
    """Build prompts and tools for ctx and run the agent to completion."""
    git_log = await git.log_between(ctx.repo_root, ctx.prev_tag, ctx.tag)
    pr_numbers = git.extract_pr_numbers(git_log)
    changelog_entry = read_changelog_entry(ctx.repo_root, ctx.tag)
    logger.info("found %d commits, %d PRs", len(git_log.splitlines()), len(pr_numbers))

    existing, recent = await asyncio.gather(_existing_release(ctx), _recent_releases(ctx))

    settings = ctx.settings
    system = system_prompt(settings.system_extra, settings.emoji)
    user_msg = user_prompt(UserPromptContext(
        tag=ctx.tag,
        prev_tag=ctx.prev_tag,
        owner_repo=ctx.owner_repo,
        git_log=git_log,
        pr_numbers=pr_numbers,
        changelog_entry=changelog_entry,
        existing_release=existing,
        context=settings.context,
        recent_releases=recent,
    ))

    dispatcher = ToolDispatcher()
    register_repo_tools(dispatcher, ctx.repo_root)
    register_github_tools(dispatcher, ctx.github)
    tools = [*dispatcher.tool_definitions(), submit_release_notes_definition()]

    verifier = None
    if settings.verify_links and not dry_run:
        verifier = LinkVerifier(settings.link_timeout, settings.link_max_redirects)

    runner = AgentRunner(
        client,
        dispatcher,
        RunnerConfig(
            max_iterations=settings.max_turns,
            max_concurrent_tools=settings.max_concurrent_tools,
        ),
        link_verifier=verifier,
    )
    try:
        return await runner.run(system, user_msg, tools)
    finally:
        if verifier is not None:
            await verifier.close()


async def publish(ctx: Context, parsed: ParsedOutput, dry_run: bool = False) -> None:
    """Update the existing GitHub release for ctx.tag with the new notes."""
    if dry_run or ctx.github is None:
        return
    release = await ctx.github.get_release_by_tag(ctx.tag)
    if release is None:
        logger.warning("No GitHub release found for %s -- skipping update", ctx.tag)
        return
    await ctx.github.update_release(release.id, parsed.release_title, parsed.release_body)


async def generate(opts: GenerateOptions, cwd: Path | None = None) -> ParsedOutput:
    """Full `communique generate` flow. Returns the final ParsedOutput."""
    ctx = await gather_context(opts, cwd)
    client: LLMClient | None = None
    try:
        client = build_client(ctx.settings)
        parsed = await generate_notes(ctx, client, opts.dry_run)

        if not parsed.release_title.startswith(ctx.tag):
            parsed.release_title = f"{ctx.tag}: {parsed.release_title}"

        if opts.github_release:
            await publish(ctx, parsed, opts.dry_run)
    finally:
        if client is not None:
            await client.close()
        if ctx.github is not None:
            await ctx.github.close()

    u = parsed.usage
    print(
        f"Tokens: {u.input_tokens} input + {u.output_tokens} output = {u.total_tokens} total",
        file=sys.stderr,
    )

    text = render(parsed, opts.concise)
    if opts.output is not None:
        opts.output.write_text(text + "\n", encoding="utf-8")
        logger.info("Wrote %s", opts.output)
    else:
        print(text)
    return parsed
