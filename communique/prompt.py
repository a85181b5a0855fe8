"""System and user prompts for release-notes generation."""

from __future__ import annotations

from dataclasses import dataclass, field

_SYSTEM_PROMPT = """\
You are an expert technical writer generating release notes for a software project.

Use the repository tools (read_file, list_files, grep, git_show, get_commits) and, \
when available, the GitHub tools (get_pr, get_pr_diff, get_issue) to understand \
what changed and why. Read relevant source files, PR descriptions, and diffs so \
the notes are accurate.

When you are done, call submit_release_notes exactly once with:
- changelog: a concise entry using Keep a Changelog categories (### Added, ### Fixed, ...)
- release_title: a catchy, concise title without a leading #
- release_body: detailed GitHub release notes in markdown, starting with a brief \
narrative summary, then the notable changes, contributor mentions (@username) \
where relevant, and a Full Changelog link

Write clearly and concisely. Focus on what matters to users. Do NOT fabricate \
changes; only describe what you can verify from the git log, PRs, and source code. \
Only include links you are confident exist."""

_EMOJI = "Use emoji sparingly in section headings of the release body."
_NO_EMOJI = "Do not use emoji anywhere in the output."


@dataclass
class UserPromptContext:
    tag: str
    prev_tag: str
    owner_repo: str
    git_log: str
    pr_numbers: list[int] = field(default_factory=list)
    changelog_entry: str | None = None
    existing_release: str | None = None
    context: str | None = None
    recent_releases: list[tuple[str, str]] = field(default_factory=list)


def system_prompt(extra: str | None = None, emoji: bool = True) -> str:
    parts = [_SYSTEM_PROMPT, _EMOJI if emoji else _NO_EMOJI]
    if extra:
        parts.append(f"## Additional Instructions\n{extra}")
    return "\n\n".join(parts)


def user_prompt(ctx: UserPromptContext) -> str:
    parts = [
        f"Generate release notes for **{ctx.tag}** of {ctx.owner_repo} "
        f"(previous release: {ctx.prev_tag}).",
        f"## Git Log\n```\n{ctx.git_log.strip()}\n```",
        f"Full Changelog: https://github.com/{ctx.owner_repo}/compare/{ctx.prev_tag}...{ctx.tag}",
    ]

    if ctx.context:
        parts.append(f"## Project Context\n{ctx.context}")

    if ctx.pr_numbers:
        prs = ", ".join(f"#{n}" for n in ctx.pr_numbers)
        parts.append(
            f"## Referenced PRs\n{prs}\n\n"
            "Use the `get_pr` and `get_pr_diff` tools to understand these changes in detail."
        )

    if ctx.changelog_entry:
        parts.append(
            "## Existing CHANGELOG.md Entry\n"
            "Here is the current entry for this release; use it as a starting point and improve it:\n"
            f"```\n{ctx.changelog_entry}\n```"
        )

    if ctx.existing_release:
        parts.append(
            "## Existing GitHub Release Body\n"
            "Here are the current auto-generated release notes; editorialize and improve them:\n"
            f"```\n{ctx.existing_release}\n```"
        )

    for tag, body in ctx.recent_releases:
        parts.append(f"## Previous Release {tag} (match its style)\n```\n{body}\n```")

    parts.append(
        "Browse the repository as needed to understand the changes, "
        "then call submit_release_notes."
    )
    return "\n\n".join(parts)
