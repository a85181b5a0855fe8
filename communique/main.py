"""communique CLI entry point.

    communique generate v1.2.0 [--prev-tag v1.1.0] [--github-release] ...
    communique init [--force]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from communique import __version__
from communique.config import CONFIG_FILENAME, Settings, config_template
from communique.errors import CommuniqueError, ExitCode
from communique.generate import GenerateOptions, generate

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="communique",
        description="Generate editorialized release notes from git history with an LLM",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate release notes for a tag")
    gen.add_argument("tag", help="Tag to generate release notes for")
    gen.add_argument("--prev-tag", help="Previous tag (default: detected from git)")
    gen.add_argument(
        "--github-release",
        action="store_true",
        help="Update the existing GitHub release with the generated notes",
    )
    gen.add_argument("--concise", action="store_true", help="Print only the changelog entry")
    gen.add_argument(
        "--dry-run",
        action="store_true",
        help="Do not publish anything and skip link verification",
    )
    gen.add_argument("--repo", help="GitHub owner/repo (default: detected from origin)")
    gen.add_argument("--model", help="Model name (claude* uses Anthropic)")
    gen.add_argument("--max-tokens", type=int, help="Max output tokens per turn")
    gen.add_argument("--provider", choices=["anthropic", "openai"], help="Override provider detection")
    gen.add_argument("--base-url", help="API base URL (e.g. a local OpenAI-compatible server)")
    gen.add_argument("-o", "--output", type=Path, help="Write the notes to this file")
    gen.add_argument("--config", type=Path, help=f"Config file (default: {CONFIG_FILENAME} in repo root)")

    init = sub.add_parser("init", help=f"Write a starter {CONFIG_FILENAME}")
    init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    return parser


def _log_level() -> str:
    try:
        return Settings().log_level
    except ValidationError:
        return "warning"


def init_config(force: bool, directory: Path | None = None) -> Path:
    path = (directory or Path.cwd()) / CONFIG_FILENAME
    if path.exists() and not force:
        raise CommuniqueError(f"{path} already exists (use --force to overwrite)")
    path.write_text(config_template(), encoding="utf-8")
    return path


def main(argv: list[str] | None = None) -> int:
    """Entry point -- parse args, configure logging, run the command."""
    args = build_parser().parse_args(argv)

    # Configure logging
    level = "debug" if args.verbose else _log_level()
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        if args.command == "init":
            path = init_config(args.force)
            print(f"Wrote {path}")
            return ExitCode.OK

        opts = GenerateOptions(
            tag=args.tag,
            prev_tag=args.prev_tag,
            github_release=args.github_release,
            concise=args.concise,
            dry_run=args.dry_run,
            repo=args.repo,
            model=args.model,
            max_tokens=args.max_tokens,
            provider=args.provider,
            base_url=args.base_url,
            output=args.output,
            config=args.config,
        )
        asyncio.run(generate(opts))
        return ExitCode.OK
    except CommuniqueError as e:
        logger.debug("communique failed", exc_info=True)
        print(f"error: {e.message}", file=sys.stderr)
        return e.exit_code
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return ExitCode.IO_ERROR


if __name__ == "__main__":
    sys.exit(main())
