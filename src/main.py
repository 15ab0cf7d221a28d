"""
Command-line entry point.

    marketplace-ops <command> [options]
    python -m src.main <command> [options]

Env files are loaded before settings are read, so every command sees the
same environment whether it came from the shell or from .env files.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from src import __version__
from src.commands import catalogue, env, health, isolation, migrations, payments, schema
from src.commands.dependencies import CommandContext
from src.config.settings import get_settings
from src.core.env.files import load_env

logger = logging.getLogger(__name__)

COMMAND_MODULES = (env, isolation, health, payments, catalogue, schema, migrations)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marketplace-ops",
        description="Operational guards and diagnostics for the marketplace",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--root", type=Path, default=Path.cwd(), help="Project root (default: current directory)")
    parser.add_argument("--env-file", type=Path, help="Load this env file instead of the default lookup")
    parser.add_argument("--no-env-file", action="store_true", help="Use the process environment only")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    subparsers.required = True
    for module in COMMAND_MODULES:
        module.register(subparsers)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, args.log_level),
    )

    root = args.root.resolve()
    try:
        loaded = None
        if not args.no_env_file:
            env_file = args.env_file
            if env_file is not None and not env_file.is_absolute():
                env_file = root / env_file
            loaded = load_env(root, env_file=env_file)
        get_settings.cache_clear()

        ctx = CommandContext.from_environment(root, env_file=loaded)
        return args.handler(ctx, args)
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted")
        return 1
    except Exception as e:
        logger.error("Command failed", extra={"command": args.command, "error": str(e)}, exc_info=True)
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
