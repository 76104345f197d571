"""Command-line interface for agentsync.

Exit codes:
    0  every target synced (or had nothing to do)
    1  at least one target ended ``failed`` or ``partial``
    2  configuration or usage error
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .config_loader import ensure_config, load_config_file, load_hierarchical_config
from .config_schema import UnifiedConfig, build_config
from .errors import AgentSyncError, ConfigError
from .file_handler import remove_path
from .ignore_rules import (
    DEFAULT_IGNORE_RULES,
    append_ignore_rules,
    ignore_rule_status,
    read_ignore_preference,
    record_ignore_prompt_declined,
)
from .logger import setup_logging
from .sources.catalog import SourceCatalog, local_items
from .sync.engine import SyncOrchestrator
from .sync.manifest import project_state_dir
from .sync.models import ALL_KINDS, ItemKind
from .sync.reporter import format_local_items, format_sync_report, report_to_json

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG = 2

_EPILOG = """
Examples:
  # Sync every category to every target
  agentsync

  # Preview what would change
  agentsync --dry-run

  # Only Claude and Codex, commands only
  agentsync --only claude,codex --category commands

  # Remove outputs whose source was deleted (never deletes edited files
  # without confirmation)
  agentsync --remove-missing

  # Share-safe sync that ignores local overrides for skills
  agentsync --exclude-local skills

  # Machine-readable summary
  agentsync --json

  # Write a commented starter config to .agentsync/config.yml
  agentsync --init-config

  # Forget manifests and remembered answers for this repository
  agentsync --reset-state

Local overrides live under agents/.local/ or use a .local suffix
(deploy.local.md, SKILL.local.md, mytool.local/).
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentsync",
        description="Sync skills, commands, subagents and instructions from "
        "one agents/ directory to every configured coding-agent tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=_EPILOG,
    )
    parser.add_argument(
        "--repo",
        default=None,
        help="Repository root (default: current directory)",
    )
    parser.add_argument(
        "--agents-dir",
        help="Source directory (default: <repo>/agents or sync.agents_dir)",
    )
    parser.add_argument(
        "--config",
        help="Explicit config file (skips config discovery)",
    )
    parser.add_argument(
        "--only",
        action="append",
        metavar="TARGETS",
        help="Comma-separated target ids or aliases to sync (repeatable)",
    )
    parser.add_argument(
        "--skip",
        action="append",
        metavar="TARGETS",
        help="Comma-separated targets to leave out; ignored with --only",
    )
    parser.add_argument(
        "--category",
        action="append",
        metavar="CATEGORY",
        help="skills, commands, subagents or instructions (repeatable; "
        "default: all)",
    )
    parser.add_argument(
        "--remove-missing",
        action="store_true",
        help="Remove managed outputs whose source no longer exists",
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm removal of outputs modified since the last sync",
    )
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt; modified outputs are kept with a warning",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would change without writing anything",
    )
    parser.add_argument(
        "--exclude-local",
        nargs="?",
        const="all",
        metavar="CATEGORIES",
        help="Ignore local overrides (all categories, or a comma list)",
    )
    parser.add_argument(
        "--list-local",
        action="store_true",
        help="List local source items per category and exit",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the summary as JSON",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Create a starter config file and exit",
    )
    parser.add_argument(
        "--reset-state",
        action="store_true",
        help="Delete the stored state of this repository and exit",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        help="Also write log records to this file",
    )
    parser.add_argument(
        "--debug-format",
        choices=["text", "json"],
        default="text",
        help="Log record format (default: text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"agentsync version {__version__}",
    )
    return parser


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def _split_names(values: list[str] | None) -> list[str]:
    names: list[str] = []
    for value in values or []:
        names.extend(part.strip() for part in value.split(",") if part.strip())
    return names


def _parse_categories(values: list[str] | None) -> list[ItemKind]:
    """Map category names to kinds, keeping canonical order.

    Raises:
        ConfigError: On an unknown category name.
    """
    names = _split_names(values)
    if not names or "all" in (n.lower() for n in names):
        return list(ALL_KINDS)
    try:
        wanted = {ItemKind.from_category(name) for name in names}
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return [kind for kind in ALL_KINDS if kind in wanted]


def _load_config(args: argparse.Namespace, repo_root: Path) -> UnifiedConfig:
    if args.config:
        raw = load_config_file(Path(args.config).expanduser())
    else:
        raw = load_hierarchical_config(repo_root)
    return build_config(raw)


def _confirm_removal(path: str) -> bool:
    answer = input(
        f"{path} was modified since the last sync. Remove it anyway? [y/N] "
    )
    return answer.strip().lower() in ("y", "yes")


def _reset_state(state_dir: Path, repo_root: Path) -> None:
    path = project_state_dir(state_dir, repo_root)
    if not path.exists():
        print(f"No stored state for {repo_root}")
        return
    remove_path(path)
    logger.info("Removed state directory %s", path)
    print(f"Removed stored state: {path}")


def _check_ignore_rules(
    repo_root: Path, state_dir: Path, interactive: bool, dry_run: bool
) -> None:
    """Make sure local sources stay out of version control.

    Non-interactive runs (and dry runs) only warn.  Interactive runs offer
    to append the missing rules; a declined offer is remembered per
    repository until ``--reset-state``.
    """
    status = ignore_rule_status(repo_root, DEFAULT_IGNORE_RULES)
    if not status.missing_rules:
        return
    rules = ", ".join(status.missing_rules)

    if not interactive or dry_run:
        print(
            f"Warning: {status.ignore_file} is missing ignore rules for local "
            f"sources ({rules}).",
            file=sys.stderr,
        )
        return

    if read_ignore_preference(state_dir, repo_root).ignore_prompt_declined:
        logger.debug("Ignore rule prompt declined earlier for %s", repo_root)
        return

    answer = input(f"Add {rules} to {status.ignore_file}? [Y/n] ")
    try:
        if answer.strip().lower() in ("", "y", "yes"):
            append_ignore_rules(repo_root, DEFAULT_IGNORE_RULES)
            print(f"Updated {status.ignore_file}")
        else:
            record_ignore_prompt_declined(state_dir, repo_root)
    except OSError as exc:
        logger.warning("Could not store ignore rule answer: %s", exc)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return the process exit code."""
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(
        debug=args.debug, log_file=args.log_file, debug_format=args.debug_format
    )

    repo_root = Path(args.repo).expanduser().resolve() if args.repo else Path.cwd()

    if args.init_config:
        path = ensure_config(repo_root=repo_root)
        print(f"Config file: {path}")
        return EXIT_OK

    try:
        config = _load_config(args, repo_root)
        setup_logging(
            debug=args.debug,
            log_file=args.log_file or config.logging.file,
            debug_format=args.debug_format,
            level=config.logging.level,
        )
        categories = _parse_categories(args.category)
        if args.exclude_local is None:
            excluded: list[ItemKind] = []
        else:
            excluded = _parse_categories([args.exclude_local])

        agents_dir = None
        if args.agents_dir:
            agents_dir = Path(args.agents_dir).expanduser()
            if not agents_dir.is_absolute():
                agents_dir = repo_root / agents_dir
        orchestrator = SyncOrchestrator.from_config(
            repo_root, config, agents_dir=agents_dir
        )

        if args.reset_state:
            _reset_state(orchestrator.state_dir, orchestrator.repo_root)
            return EXIT_OK

        if args.list_local:
            catalog = SourceCatalog(
                orchestrator.repo_root,
                orchestrator.agents_dir,
                orchestrator.registry,
            )
            listing = {
                kind.category: local_items(catalog.load_items(kind))
                for kind in categories
            }
            print(format_local_items(listing))
            return EXIT_OK

        interactive = not args.non_interactive and sys.stdin.isatty()
        if args.yes:
            non_interactive, confirm = False, (lambda path: True)
        elif not interactive:
            non_interactive, confirm = True, None
        else:
            non_interactive, confirm = False, _confirm_removal

        report = orchestrator.run(
            categories=categories,
            only=_split_names(args.only),
            skip=_split_names(args.skip),
            remove_missing=args.remove_missing,
            exclude_local=excluded,
            dry_run=args.dry_run,
            non_interactive=non_interactive,
            confirm_removal=confirm,
        )
    except ConfigError as exc:
        logger.debug("Configuration error", exc_info=True)
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG
    except AgentSyncError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILURES

    if args.json:
        print(json.dumps(report_to_json(report), indent=2))
    else:
        print(format_sync_report(report))

    _check_ignore_rules(
        orchestrator.repo_root, orchestrator.state_dir, interactive, args.dry_run
    )
    return EXIT_FAILURES if report.had_failures else EXIT_OK


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    run()
