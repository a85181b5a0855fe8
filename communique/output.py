"""ParsedOutput: the release notes a successful run produces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from communique.errors import ParseError
from communique.providers.schemas import Usage

_REQUIRED_FIELDS = ("changelog", "release_title", "release_body")
_MAX_FALLBACK_TITLE = 80


@dataclass
class ParsedOutput:
    changelog: str
    release_title: str
    release_body: str
    usage: Usage = field(default_factory=Usage)

    def texts(self) -> tuple[str, str, str]:
        """All user-facing text fields, e.g. for link checking."""
        return self.changelog, self.release_title, self.release_body


def parse_submission(tool_input: dict[str, Any], usage: Usage) -> ParsedOutput:
    """Build ParsedOutput from a submit_release_notes call.

    Raises ParseError naming the first required field that is missing or
    not a string.
    """
    values: dict[str, str] = {}
    for name in _REQUIRED_FIELDS:
        value = tool_input.get(name)
        if not isinstance(value, str):
            raise ParseError(f"missing {name} in submission")
        values[name] = value
    return ParsedOutput(usage=usage, **values)


def parse_text_fallback(text: str | None, usage: Usage) -> ParsedOutput | None:
    """Parse free text into ParsedOutput when the model skipped the submit tool.

    A leading ``# Title`` line becomes the release title and the rest the
    body (and changelog). Without such a heading, the first line is the
    title and the whole text is the body. Returns None for empty text.
    """
    text = (text or "").strip()
    if not text:
        return None

    if text.startswith("# "):
        heading, _, rest = text[2:].partition("\n")
        body = rest.strip()
        if body:
            return ParsedOutput(
                changelog=body,
                release_title=heading.strip(),
                release_body=body,
                usage=usage,
            )

    first_line = text.splitlines()[0]
    title = first_line.lstrip("#").strip()[:_MAX_FALLBACK_TITLE]
    return ParsedOutput(changelog=text, release_title=title, release_body=text, usage=usage)


def render(parsed: ParsedOutput, concise: bool = False) -> str:
    """Final text for stdout or --output: changelog only, or titled release notes."""
    if concise:
        return parsed.changelog
    return f"# {parsed.release_title}\n\n{parsed.release_body}"
