"""CLI entry point for enrollment syncs.

Usage:
    python -m enrollsync sync --period-id 123 --status ATIVA --org-id 20
    python -m enrollsync sync --period-id 123 --sink memory --timeout 120
    python -m enrollsync ping

Exit codes:
    0  success
    1  failure (upstream, sink or unexpected error)
    2  invalid request or configuration
    3  cancelled or timed out
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from enrollsync import __version__
from enrollsync.lib.cancellation import CancellationToken
from enrollsync.lib.env import load_env_file
from enrollsync.lib.errors import Cancelled, ConfigurationError, SyncError
from enrollsync.lib.logging import setup_logging
from enrollsync.lib.settings import SyncRequest, SyncSettings, load_settings
from enrollsync.lib.sinks import SINK_KINDS, MemorySheetWriter, get_sheet_writer
from enrollsync.lib.sync import EnrollmentSync

logger = logging.getLogger("enrollsync")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID = 2
EXIT_CANCELLED = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="enrollsync",
        description="Synchronize student enrollments from the academic API into a spreadsheet",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Sync period 123, active enrollments, EAD organization
    python -m enrollsync sync --period-id 123 --status ATIVA --org-id 20

    # Dry run into memory, with a 2 minute deadline
    python -m enrollsync sync --period-id 123 --sink memory --timeout 120

    # Check credentials against the API
    python -m enrollsync ping
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="YAML settings file (overrides environment)")
    parser.add_argument("--env-file", help="Load environment variables from this .env file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    parser.add_argument("--log-file", help="Also write logs to this file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Fetch enrollments and overwrite the target sheet")
    sync_parser.add_argument("--period-id", type=int, required=True, help="Academic period id (idPeriodoLetivo)")
    sync_parser.add_argument("--status", default="", help="Enrollment status filter (statusMatricula)")
    sync_parser.add_argument("--org-id", type=int, default=None, help="Organization id used for the sheet name")
    sync_parser.add_argument("--timeout", type=float, default=None, help="Run deadline in seconds")
    sync_parser.add_argument("--sink", choices=SINK_KINDS, default="sheets", help="Where to write rows")
    sync_parser.add_argument(
        "--resolve-period-name",
        action="store_true",
        help="Look up the period's display name before syncing",
    )

    subparsers.add_parser("ping", help="Authenticate against the API and report")
    return parser


def _load(args: argparse.Namespace) -> SyncSettings:
    if args.env_file:
        if not load_env_file(args.env_file, override=True):
            raise ConfigurationError(f"Env file not found or empty: {args.env_file}")
    return load_settings(args.config)


def _run_sync(args: argparse.Namespace, settings: SyncSettings) -> int:
    issues = settings.validate_for_sync(args.sink)
    if issues:
        raise ConfigurationError("Settings are incomplete for a sync", issues=issues)

    try:
        request = SyncRequest(period_id=args.period_id, status=args.status, org_id=args.org_id)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid sync request",
            issues=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
        ) from e

    timeout = args.timeout if args.timeout is not None else settings.run_timeout
    cancel = CancellationToken.with_timeout(timeout)

    writer = get_sheet_writer(args.sink, settings)
    with EnrollmentSync(settings, writer) as service:
        try:
            summary = service.run(request, cancel, resolve_period_name=args.resolve_period_name)
        except KeyboardInterrupt:
            cancel.cancel("interrupted by user")
            raise

    print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
    return EXIT_OK


def _run_ping(settings: SyncSettings) -> int:
    issues = settings.validate_for_sync("memory")
    if issues:
        raise ConfigurationError("Settings are incomplete for a ping", issues=issues)
    cancel = CancellationToken.with_timeout(settings.request_timeout)
    with EnrollmentSync(settings, MemorySheetWriter()) as service:
        print(json.dumps(service.ping(cancel)))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = _load(args)
    except ConfigurationError as e:
        setup_logging(verbose=args.verbose, json_format=args.json_logs, log_file=args.log_file)
        logger.error("%s", e)
        return EXIT_INVALID

    setup_logging(
        verbose=args.verbose,
        json_format=args.json_logs or settings.log_format == "json",
        log_file=args.log_file or settings.log_file,
        level=settings.log_level,
    )

    try:
        if args.command == "ping":
            return _run_ping(settings)
        return _run_sync(args, settings)

    except ConfigurationError as e:
        logger.error("%s", e)
        return EXIT_INVALID

    except Cancelled as e:
        logger.error("Sync timed out or was cancelled: %s", e.message)
        return EXIT_CANCELLED

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_CANCELLED

    except SyncError as e:
        logger.error("Sync failed: %s", e, extra={"error": e.to_dict()})
        return EXIT_FAILURE

    except Exception as e:
        logger.exception("Unexpected failure: %s", e)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
