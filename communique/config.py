"""Settings via pydantic-settings with COMMUNIQUE_ env prefix.

Credential fields use validation_alias to read the conventional unprefixed
env vars (ANTHROPIC_API_KEY, GITHUB_TOKEN, ...). Per-repository defaults
come from an optional communique.toml merged in by load_settings().
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from communique.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "communique.toml"

_TEMPLATE = """\
# Extra instructions appended to the system prompt.
# Use this to customize tone, style, or project-specific conventions.
#system_extra = ""

# Extra context included in every user prompt.
# Useful for project descriptions or recurring context.
#context = ""

[defaults]
#model = "claude-opus-4-6"
#max_tokens = 4096
#provider = "anthropic"
#base_url = ""
#repo = "owner/repo"
#emoji = true
#verify_links = true
#match_style = true
"""

# Keys accepted in the [defaults] table of communique.toml
_FILE_DEFAULTS = frozenset({
    "model",
    "max_tokens",
    "provider",
    "base_url",
    "repo",
    "emoji",
    "verify_links",
    "match_style",
})


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="COMMUNIQUE_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # Credentials -- unprefixed aliases match the usual env vars
    anthropic_api_key: str = Field("", validation_alias="ANTHROPIC_API_KEY")
    openai_api_key: str = Field(
        "", validation_alias=AliasChoices("OPENAI_API_KEY", "LLM_API_KEY")
    )
    github_token: str = Field("", validation_alias="GITHUB_TOKEN")

    # LLM
    model: str = "claude-opus-4-6"
    max_tokens: int = 4096
    provider: Literal["anthropic", "openai"] | None = None
    base_url: str | None = None

    # Release notes
    repo: str | None = None
    emoji: bool = True
    verify_links: bool = True
    match_style: bool = True
    system_extra: str | None = None
    context: str | None = None

    # Agent loop
    max_turns: int = 25
    max_concurrent_tools: int = 8

    # HTTP
    retry_max_retries: int = 5
    retry_initial_delay: float = 0.5  # seconds
    retry_max_delay: float = 30.0  # seconds
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 300  # seconds
    link_timeout: float = 10.0  # seconds
    link_max_redirects: int = 5

    log_level: str = "warning"

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        if self.max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        if self.max_concurrent_tools < 1:
            raise ValueError("max_concurrent_tools must be >= 1")
        if self.retry_initial_delay > self.retry_max_delay:
            raise ValueError(
                f"retry_initial_delay ({self.retry_initial_delay}) must be <= "
                f"retry_max_delay ({self.retry_max_delay})"
            )
        return self


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse communique.toml into Settings keyword arguments.

    Top-level ``system_extra`` and ``context`` plus the ``[defaults]``
    table are recognised. Anything else is a ConfigError.
    """
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"{path}: {e}") from e

    values: dict[str, Any] = {}
    for key in ("system_extra", "context"):
        if key in data:
            values[key] = data.pop(key)

    defaults = data.pop("defaults", {})
    if not isinstance(defaults, dict):
        raise ConfigError(f"{path}: [defaults] must be a table")
    unknown = set(defaults) - _FILE_DEFAULTS
    if unknown or data:
        names = ", ".join(sorted(unknown | set(data)))
        raise ConfigError(f"{path}: unknown config keys: {names}")

    # An empty base_url means "use the vendor default"
    if defaults.get("base_url") == "":
        defaults.pop("base_url")
    values.update(defaults)
    return values


def load_settings(
    repo_root: Path | None = None,
    config_path: Path | None = None,
    **overrides: Any,
) -> Settings:
    """Build Settings from env, communique.toml, and explicit overrides.

    Overrides whose value is None are ignored so CLI flags that were not
    given fall through to the file and the environment.
    """
    values: dict[str, Any] = {}
    if config_path is not None:
        values.update(read_config_file(config_path))
    elif repo_root is not None and (repo_root / CONFIG_FILENAME).exists():
        values.update(read_config_file(repo_root / CONFIG_FILENAME))
        logger.debug("Loaded %s", repo_root / CONFIG_FILENAME)

    values.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e


def config_template() -> str:
    """Return the commented starter communique.toml."""
    return _TEMPLATE
