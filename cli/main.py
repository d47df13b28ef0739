#!/usr/bin/env python
"""
Fleet CLI - resolve manifests and provision secrets for an agent fleet

Usage:
    fleet init [IDENTITY ...]
    fleet setup --onboard
    python -m cli.main secrets
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load tool settings FIRST (before importing project modules that read them)
load_dotenv(Path.home() / ".fleet" / "config.env")

from fleet.constants import DEFAULT_INSTANCE_TYPE, DEFAULT_PROVIDER, DEFAULT_REGION, DEFAULT_STACK_NAME
from fleet.constants import LOG_DIR, LOG_LEVEL, PROVIDERS
from fleet.errors import FleetError

from cli.command_handler import CommandHandler
from cli.renderer import console, show_error

logger = logging.getLogger(__name__)


def setup_logging():
    """File log at LOG_LEVEL, console only WARNING and above."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # File handler - full record of every run
    file_handler = logging.FileHandler(LOG_DIR / "fleet.log", encoding="utf-8")
    file_handler.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    # Console handler - WARNING and above only, so INFO logs don't clutter command output
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleet",
        description="Resolve fleet manifests and provision agent secrets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-C", "--project-dir",
        type=Path,
        default=Path.cwd(),
        help="Fleet project directory (default: current directory)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init
    init_parser = subparsers.add_parser("init", help="Create fleet.yaml (or repair an existing one)")
    init_parser.add_argument("identities", nargs="*", help="Identity references (default: discover on disk)")
    init_parser.add_argument("--provider", choices=PROVIDERS, default=DEFAULT_PROVIDER)
    init_parser.add_argument("--stack-name", default=DEFAULT_STACK_NAME)
    init_parser.add_argument("--region", default=DEFAULT_REGION)
    init_parser.add_argument("--instance-type", default=DEFAULT_INSTANCE_TYPE)
    init_parser.add_argument("--owner-name", default=None)

    # repair
    subparsers.add_parser("repair", help="Reconcile fleet.yaml with identity sources on disk")

    # setup
    setup_parser = subparsers.add_parser("setup", help="Resolve secrets, run hooks, write the manifest")
    setup_parser.add_argument("--env-file", type=Path, default=None, help="Path to .env (default: <project>/.env)")
    setup_parser.add_argument("--onboard", action="store_true", help="Run interactive onboard hooks")
    setup_parser.add_argument("--skip-hooks", action="store_true", help="Do not run resolve hooks")

    # onboard
    onboard_parser = subparsers.add_parser("onboard", help="Run onboard hooks only")
    onboard_parser.add_argument("--env-file", type=Path, default=None)

    # secrets
    secrets_parser = subparsers.add_parser("secrets", help="Show which env vars are set or missing")
    secrets_parser.add_argument("--env-file", type=Path, default=None)

    # plugins
    plugins_parser = subparsers.add_parser("plugins", help="Inspect the plugin registry")
    plugins_sub = plugins_parser.add_subparsers(dest="plugins_command")
    plugins_sub.add_parser("list", help="List known plugins")
    info_parser = plugins_sub.add_parser("info", help="Show plugin details")
    info_parser.add_argument("name", help="Plugin name")

    return parser


def main(argv=None):
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(2)

    setup_logging()
    handler = CommandHandler(args.project_dir)
    try:
        sys.exit(handler.handle(args))
    except FleetError as e:
        logger.info(f"Command '{args.command}' failed: {type(e).__name__}")
        show_error(e)
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]interrupted[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
