"""communique -- AI-written release notes from git history."""

__version__ = "0.1.0"
