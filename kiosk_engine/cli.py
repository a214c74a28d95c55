"""Entry points — ``kiosk-content-sync`` and ``kiosk-health-check`` console scripts.

Both are meant to be run by a periodic scheduler. They never prompt; the
exit code tells the scheduler how the run went.
"""

from __future__ import annotations

import argparse
import logging
import sqlite3
import sys
from pathlib import Path
from typing import NoReturn

from rich.console import Console
from rich.panel import Panel

from .config import load_health_settings, load_sync_settings
from .errors import EXIT_CONFIG_ERROR, EXIT_GENERAL_ERROR, EXIT_SUCCESS, ConfigError, EngineError
from .health.engine import EXIT_ERROR, exit_code_for, run_health
from .health.models import HealthReport, Severity
from .infra.lock import install_signal_handlers
from .infra.logging_setup import configure_logging
from .infra.spam_guard import SpamGuard
from .infra.state import StateStore
from .sync.runner import SyncReport, run_sync

logger = logging.getLogger("kiosk_engine")
console = Console()

_STATUS_STYLE = {Severity.OK: "green", Severity.WARNING: "yellow", Severity.CRITICAL: "red"}


class _Parser(argparse.ArgumentParser):
    """ArgumentParser that exits with a subsystem-specific code on bad flags."""

    def __init__(self, *args, error_exit_code: int = 2, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.error_exit_code = error_exit_code

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(self.error_exit_code, f"{self.prog}: error: {message}\n")


# ── Spam guard persistence ───────────────────────────────────────────────────


def _open_spam_guard(state_dir: Path, window: float) -> tuple[SpamGuard, StateStore | None]:
    try:
        store = StateStore.in_dir(state_dir)
        entries = store.load_spam_entries()
    except (OSError, sqlite3.Error):
        # Read-only state dir: de-duplicate within this run only.
        return SpamGuard(window=window), None
    return SpamGuard(window=window, entries=entries), store


def _close_spam_guard(guard: SpamGuard, store: StateStore | None) -> None:
    if store is None:
        return
    try:
        store.save_spam_entries(guard.snapshot(), prune_before=guard.pruned_before)
    except sqlite3.Error as e:
        logger.warning("Failed to persist spam-guard state: %s", e)
    finally:
        store.close()


# ── Content sync ─────────────────────────────────────────────────────────────


def build_sync_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="kiosk-content-sync",
        description="Synchronize kiosk content from a remote manifest with atomic publish.",
        error_exit_code=EXIT_CONFIG_ERROR,
        epilog="Exit codes: 0 success, 1 general, 2 network, 3 validation, 4 lock, 5 config",
    )
    parser.add_argument("--manifest-url", help="Override manifest URL")
    parser.add_argument("--bandwidth", dest="bandwidth_limit", help="Bandwidth limit for media, e.g. 500K, 1M")
    parser.add_argument("--max-retries", type=int, help="Maximum retry attempts (default: 3)")
    parser.add_argument("--timeout", type=int, help="Download timeout in seconds (default: 300)")
    parser.add_argument("--dry-run", action="store_true", default=None,
                        help="Show what would be downloaded without doing it")
    parser.add_argument("--force", action="store_true", default=None,
                        help="Download even if content is up to date")
    parser.add_argument("--verbose", action="store_true", default=None, help="Enable verbose logging")
    parser.add_argument("--quiet", action="store_true", default=None,
                        help="Suppress all output except errors")
    parser.add_argument("--config", help="Alternative YAML configuration file")
    return parser


def _print_sync_report(report: SyncReport) -> None:
    if report.up_to_date:
        outcome = "[green]already up to date[/green]"
    elif report.dry_run:
        outcome = "[yellow]dry run, nothing published[/yellow]"
    else:
        outcome = "[green]published[/green]"
    lines = [
        f"[bold]Manifest version:[/bold] {report.version}",
        f"Outcome: {outcome}",
        f"Files: {report.files} ({len(report.downloaded)} downloaded, {len(report.reused)} reused)",
        f"Total content size: {report.total_size}",
    ]
    if report.backup is not None:
        lines.append(f"Backup: {report.backup.name}")
    console.print(Panel.fit("\n".join(lines), title="kiosk-content-sync", border_style="green"))


def content_sync_main(argv: list[str] | None = None) -> int:
    args = build_sync_parser().parse_args(argv)
    try:
        settings = load_sync_settings(
            args.config,
            manifest_url=args.manifest_url,
            bandwidth_limit=args.bandwidth_limit,
            max_retries=args.max_retries,
            timeout=args.timeout,
            dry_run=args.dry_run,
            force=args.force,
            verbose=args.verbose,
            quiet=args.quiet,
        )
    except ConfigError as e:
        configure_logging(logging.ERROR)
        logger.error("%s", e)
        return e.exit_code

    if settings.verbose:
        level = logging.DEBUG
    elif settings.quiet:
        level = logging.ERROR
    else:
        level = logging.INFO

    guard, store = _open_spam_guard(settings.state_dir, settings.spam_window_seconds)
    configure_logging(level, settings.log_file, guard,
                      file_level=logging.DEBUG if settings.verbose else logging.INFO)
    install_signal_handlers()

    try:
        report = run_sync(settings)
    except EngineError as e:
        logger.error("%s", e)
        return e.exit_code
    except Exception:
        logger.exception("Unexpected error during content sync")
        return EXIT_GENERAL_ERROR
    finally:
        _close_spam_guard(guard, store)

    if not settings.quiet:
        _print_sync_report(report)
    return EXIT_SUCCESS


# ── Health check ─────────────────────────────────────────────────────────────


def build_health_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="kiosk-health-check",
        description="System health check and automatic recovery for kiosk devices.",
        error_exit_code=EXIT_ERROR,
        epilog="Exit codes: 0 healthy, 1 warning, 2 critical, 3 script error",
    )
    parser.add_argument("--verbose", action="store_true", default=None, help="Enable verbose output")
    parser.add_argument("--dry-run", action="store_true", default=None,
                        help="Show what would be done without doing it")
    parser.add_argument("--force-restart", action="store_true", default=None,
                        help="Restart services even if healthy")
    parser.add_argument("--skip-watchdog", action="store_true", default=None,
                        help="Skip hardware watchdog feeding")
    parser.add_argument("--config", help="Alternative YAML configuration file")
    return parser


def _print_health_report(report: HealthReport) -> None:
    style = _STATUS_STYLE[report.status]
    lines = [f"[bold]Status:[/bold] [{style}]{report.status.name}[/{style}]"]
    for r in report.results:
        s = _STATUS_STYLE[r.status]
        lines.append(f"  [{s}]{r.status.name:<8}[/{s}] {r.check_name}: {r.detail}")
    if report.actions:
        lines.append("[bold]Recovery actions:[/bold]")
        lines.extend(f"  {a.action} ({a.target_check}): {a.outcome.value}" for a in report.actions)
    console.print(Panel.fit("\n".join(lines), title="kiosk-health-check", border_style=style))


def health_check_main(argv: list[str] | None = None) -> int:
    args = build_health_parser().parse_args(argv)
    try:
        settings = load_health_settings(
            args.config,
            verbose=args.verbose,
            dry_run=args.dry_run,
            force_restart=args.force_restart,
            skip_watchdog=args.skip_watchdog,
        )
    except ConfigError as e:
        configure_logging(logging.ERROR)
        logger.error("%s", e)
        return EXIT_ERROR

    guard, store = _open_spam_guard(settings.state_dir, settings.spam_window_seconds)
    configure_logging(
        logging.DEBUG if settings.verbose else logging.ERROR,
        settings.log_file,
        guard,
        file_level=logging.DEBUG if settings.verbose else logging.INFO,
    )
    install_signal_handlers()

    try:
        report = run_health(settings, spam_guard=guard)
    except EngineError as e:
        logger.error("%s", e)
        return EXIT_ERROR
    except Exception:
        logger.exception("Unexpected error during health check")
        return EXIT_ERROR
    finally:
        _close_spam_guard(guard, store)

    if settings.verbose:
        _print_health_report(report)
    return exit_code_for(report.status)

