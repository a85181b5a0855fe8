"""Agent module -- the tool-calling loop that produces release notes.

Public API:
    AgentRunner     - Turn loop over an LLMClient with tool dispatch
    RunnerConfig    - Iteration and concurrency limits
    ToolDispatcher  - Tool registry and dispatcher
    ToolCache       - Per-run memo of successful tool results
    LinkVerifier    - Broken-link detection for submissions
"""

from communique.agent.links import LinkVerifier, extract_urls
from communique.agent.runner import AgentRunner, RunnerConfig
from communique.agent.tools import (
    SUBMIT_TOOL,
    ToolCache,
    ToolDispatcher,
    submit_release_notes_definition,
)

__all__ = [
    "AgentRunner",
    "LinkVerifier",
    "RunnerConfig",
    "SUBMIT_TOOL",
    "ToolCache",
    "ToolDispatcher",
    "extract_urls",
    "submit_release_notes_definition",
]
