"""Command-line entry point for jpd-github-sync.

Subcommands:

    sync              Run one reconciliation pass (``--dry-run`` to preview).
    check-connection  Verify JPD and GitHub credentials.
    init              Write a commented starter config file.

All diagnostics go to stderr; stdout carries only the report.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .config_loader import (
    CONFIG_DIR_NAME,
    connection_fallbacks,
    discover_config_files,
    ensure_config,
    load_config_file,
    load_hierarchical_config,
)
from .config_schema import UnifiedConfig, build_config
from .core import ApiGateway, ConnectionCache, GitHubClient, JpdClient
from .errors import FatalSyncError
from .logger import setup_logging
from .sync import (
    SyncEngine,
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)
from .transform import TransformerEngine

logger = logging.getLogger(__name__)

CONNECTION_CACHE_FILE = "connection-cache.json"

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_RECORD_ERRORS = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jpd-github-sync",
        description="Keep Jira Product Discovery ideas and GitHub issues in agreement",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview what the next pass would do
  jpd-github-sync sync --dry-run

  # Run a pass with an explicit config file and JSON output
  jpd-github-sync sync --config ops/jpd_sync.yml --json

  # Check credentials only
  jpd-github-sync check-connection

Credentials are read from JPD_EMAIL, JPD_API_KEY and GITHUB_TOKEN
(environment or .env file); they have no command-line flags.
        """,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"jpd-github-sync version {__version__}",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        help="Config file path (default: discovered .jpd_sync/config.yml)",
    )
    common.add_argument(
        "--jpd-url",
        help="Override the Atlassian site URL (takes precedence over JPD_BASE_URL)",
    )
    common.add_argument("--owner", help="Override the GitHub repository owner")
    common.add_argument("--repo", help="Override the GitHub repository name")
    common.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    common.add_argument("--log-file", help="Also append logs to this file")
    common.add_argument(
        "--log-format",
        choices=("text", "json"),
        help="Log record format (default: from config, else text)",
    )

    subparsers = parser.add_subparsers(dest="command")

    sync_parser = subparsers.add_parser(
        "sync", parents=[common], help="Run one reconciliation pass"
    )
    sync_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Classify and plan everything without writing to either tracker",
    )
    sync_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON on stdout",
    )

    subparsers.add_parser(
        "check-connection",
        parents=[common],
        help="Verify JPD and GitHub credentials",
    )

    init_parser = subparsers.add_parser(
        "init", help="Write a starter config file if none exists"
    )
    init_parser.add_argument(
        "--path",
        help=f"Where to write it (default: {CONFIG_DIR_NAME}/config.yml)",
    )
    return parser


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def _load_raw_config(args: argparse.Namespace) -> tuple[dict, Path]:
    """Return the raw config dict and the directory it was loaded from."""
    if args.config:
        path = Path(args.config).expanduser().resolve()
        return load_config_file(path), path.parent
    paths = discover_config_files()
    base_dir = paths[0].parent if paths else Path.cwd()
    return load_hierarchical_config(), base_dir


def build_gateway(config: Config, unified: UnifiedConfig) -> ApiGateway:
    """Construct the API gateway for *config* with on-disk connection cache."""
    cache = ConnectionCache(
        ttl=unified.rate_limit.connection_cache_ttl,
        path=Path.cwd() / CONFIG_DIR_NAME / CONNECTION_CACHE_FILE,
    )
    return ApiGateway(
        JpdClient(config),
        GitHubClient(config),
        retry=unified.rate_limit,
        connection_cache=cache,
        max_parallel_requests=config.max_parallel_requests,
        credentials={
            "jpd": config.jpd_credentials(),
            "github": config.github_credentials(),
        },
    )


def _prepare(
    args: argparse.Namespace,
) -> tuple[Config, UnifiedConfig, Path]:
    raw, base_dir = _load_raw_config(args)
    unified = build_config(raw)

    setup_logging(
        debug=args.debug,
        log_file=args.log_file or unified.logging.file,
        debug_format=args.log_format or unified.logging.format,
        default_level=unified.logging.level,
    )

    config = load_config(
        jpd_url=args.jpd_url,
        github_owner=args.owner,
        github_repo=args.repo,
        debug=args.debug,
        yaml_fallbacks=connection_fallbacks(raw),
    )
    if config.debug and not args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    return config, unified, base_dir


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_sync(args: argparse.Namespace) -> int:
    config, unified, base_dir = _prepare(args)
    gateway = build_gateway(config, unified)
    engine = SyncEngine(
        gateway,
        unified,
        transformer=TransformerEngine(base_dir),
        jpd_base_url=config.jpd_base_url,
    )

    report = engine.run(dry_run=args.dry_run)
    logger.info(report.summary())

    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    elif args.dry_run:
        print(format_dry_run_preview(report))
    else:
        print(format_sync_report(report))

    return EXIT_RECORD_ERRORS if report.errors else EXIT_OK


def cmd_check_connection(args: argparse.Namespace) -> int:
    config, unified, _ = _prepare(args)
    gateway = build_gateway(config, unified)
    gateway.connection_cache.clear()
    gateway.verify_credentials()
    print(
        f"Connected to {config.jpd_base_url} and "
        f"{config.github_owner}/{config.github_repo}",
        file=sys.stderr,
    )
    return EXIT_OK


def cmd_init(args: argparse.Namespace) -> int:
    target = Path(args.path).expanduser() if args.path else None
    path = ensure_config(target)
    print(f"Config file: {path}", file=sys.stderr)
    return EXIT_OK


COMMANDS = {
    "sync": cmd_sync,
    "check-connection": cmd_check_connection,
    "init": cmd_init,
}


def main(argv: list[str] | None = None) -> int:
    """Parse *argv* and run the selected command; returns the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help(sys.stderr)
        return EXIT_FATAL

    # Load .env before anything reads os.environ
    load_dotenv()

    try:
        return COMMANDS[args.command](args)
    except FatalSyncError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_FATAL


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)
