"""Error taxonomy and CLI exit codes for communique.

Every failure that can end a run derives from CommuniqueError so the CLI
can map it to a stable exit code. ToolError is the one recoverable kind:
the agent loop turns it into an ``is_error`` tool result for the model.
"""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Process exit codes for the CLI."""

    OK = 0
    USER_ERROR = 1
    ENV_ERROR = 2
    NETWORK_ERROR = 4
    IO_ERROR = 5


class CommuniqueError(Exception):
    """Base exception for communique errors."""

    exit_code: ExitCode = ExitCode.USER_ERROR

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class TransportError(CommuniqueError):
    """Network or connection failure that survived every retry."""

    exit_code = ExitCode.NETWORK_ERROR


class ApiError(CommuniqueError):
    """LLM API returned a non-success status or an undecodable body."""

    exit_code = ExitCode.NETWORK_ERROR

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ToolError(CommuniqueError):
    """A dispatched tool failed. Fed back to the model, never fatal."""


class ParseError(CommuniqueError):
    """The model's submission or a wire response had an invalid shape."""


class IterationLimitError(CommuniqueError):
    """The agent loop ran out of turns without a submission."""


class GitHubError(CommuniqueError):
    """GitHub REST API failure."""

    exit_code = ExitCode.NETWORK_ERROR


class GitError(CommuniqueError):
    """A git command failed."""

    exit_code = ExitCode.ENV_ERROR


class ConfigError(CommuniqueError):
    """Invalid or missing configuration."""

    exit_code = ExitCode.ENV_ERROR
