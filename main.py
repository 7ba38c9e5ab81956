"""CLI entry point for the multi-tenant pipeline extractor."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from pydantic import ValidationError

from src.core.config import Settings
from src.core.errors import ExtractionError
from src.core.schemas import ExtractionResult, RunStatus
from src.output.exporter import default_output_path, export_csv, export_json
from src.session.store import load_session, save_session, session_from_cookie_header

DEFAULT_CONFIG = "config/settings.yaml"

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Extract the active hiring pipeline from every accessible Ashby organization",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--config",
            default=None,
            help=f"Path to settings YAML file (default: {DEFAULT_CONFIG} if present)",
        )
        sub.add_argument(
            "--verbose", "-v",
            action="store_true",
            help="Enable verbose (DEBUG) logging",
        )

    # --- auth ---
    auth_parser = subparsers.add_parser("auth", help="Log in through a browser and save the session")
    add_common(auth_parser)

    # --- auth-cookie ---
    cookie_parser = subparsers.add_parser(
        "auth-cookie",
        help="Save a session from a pasted Cookie header (document.cookie)",
    )
    add_common(cookie_parser)
    cookie_parser.add_argument(
        "--cookie",
        help="Cookie header value; read from stdin when omitted",
    )

    # --- recon ---
    recon_parser = subparsers.add_parser(
        "recon",
        help="Capture the application's API traffic into the recon log",
    )
    add_common(recon_parser)

    # --- extract ---
    extract_parser = subparsers.add_parser("extract", help="Run the multi-tenant extraction")
    add_common(extract_parser)
    extract_parser.add_argument("--json", dest="json_path", help="Write the JSON export here")
    extract_parser.add_argument("--csv", dest="csv_path", help="Write the CSV export here")
    extract_parser.add_argument(
        "--max-tenants",
        type=int,
        help="Process at most this many tenants",
    )
    extract_parser.add_argument(
        "--tenant",
        help="Only tenants whose name contains this text (case-insensitive)",
    )
    extract_parser.add_argument(
        "--no-enrich",
        action="store_true",
        help="Skip per-candidate interview/feedback enrichment",
    )
    extract_parser.add_argument(
        "--enrich-concurrency",
        type=int,
        help="Maximum in-flight detail requests during enrichment",
    )
    extract_parser.add_argument(
        "--only-flagged",
        action="store_true",
        help="Enrich only candidates flagged as needing scheduling",
    )
    extract_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without contacting the remote application",
    )

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def load_settings(path: str | None) -> Settings:
    """Explicit path must exist; the default path is optional."""
    if path is not None:
        return Settings.from_yaml(path)
    if Path(DEFAULT_CONFIG).exists():
        return Settings.from_yaml(DEFAULT_CONFIG)
    return Settings()


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Overlay extract flags on the loaded settings (re-validated)."""
    data = settings.model_dump()
    if args.max_tenants is not None:
        data["extraction"]["max_tenants"] = args.max_tenants
    if args.tenant is not None:
        data["extraction"]["tenant_filter"] = args.tenant
    if args.no_enrich:
        data["enrichment"]["enabled"] = False
    if args.enrich_concurrency is not None:
        data["enrichment"]["max_concurrent"] = args.enrich_concurrency
    if args.only_flagged:
        data["enrichment"]["only_if_flagged"] = True
    if args.json_path:
        data["output"]["json_path"] = args.json_path
    if args.csv_path:
        data["output"]["csv_path"] = args.csv_path
    return Settings.model_validate(data)


def dry_run(settings: Settings) -> None:
    """Print what would happen without any network call."""
    from src.client.catalog import QueryCatalog
    from src.client.queries import BUILTIN_OPERATIONS

    session = load_session(settings.session.path, settings.session.auth_cookie_names)
    catalog = QueryCatalog.from_recon_log(settings.catalog.recon_log_path)
    ext = settings.extraction

    print(f"[DRY RUN] Session: {settings.session.path} ({len(session.cookies)} cookies)")
    print(f"[DRY RUN] Remote: {settings.http.base_url}")
    for name in BUILTIN_OPERATIONS:
        print(f"[DRY RUN] Operation {name}: {catalog.resolve(name).source}")
    print(f"[DRY RUN] Tenant filter: {ext.tenant_filter or '-'}, max tenants: {ext.max_tenants or 'all'}")
    print(f"[DRY RUN] Days in stage from: {ext.days_in_stage_source}")
    if settings.enrichment.enabled:
        flagged = " (flagged only)" if settings.enrichment.only_if_flagged else ""
        print(f"[DRY RUN] Enrichment: {settings.enrichment.max_concurrent} concurrent{flagged}")
    else:
        print("[DRY RUN] Enrichment: disabled")


async def run(settings: Settings) -> ExtractionResult:
    """Run the extraction; Ctrl+C requests a graceful stop."""
    from src.pipeline.orchestrator import run_extraction

    session = load_session(settings.session.path, settings.session.auth_cookie_names)
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_cancel() -> None:
        if not cancel_event.is_set():
            print("\nStopping after the current step; partial results will be exported...")
        cancel_event.set()

    try:
        loop.add_signal_handler(signal.SIGINT, request_cancel)
    except NotImplementedError:
        logger.debug("Signal handlers unavailable; Ctrl+C will abort immediately")
    try:
        result = await run_extraction(settings, session, cancel_event=cancel_event)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass

    # Token may have been refreshed and new tenants discovered.
    save_session(session, settings.session.path)
    return result


def report(result: ExtractionResult, settings: Settings) -> None:
    json_path = export_json(result, settings.output.json_path or default_output_path("json"))
    csv_path = export_csv(result, settings.output.csv_path or default_output_path("csv"))

    flagged = sum(1 for c in result.candidates if c.needs_scheduling)
    print(f"\nExtraction {result.status.value}: {len(result.companies)} companies, "
          f"{len(result.jobs)} jobs, {len(result.candidates)} candidates "
          f"({flagged} need scheduling).")
    for failure in result.failures:
        print(f"  FAILED {failure.tenant_name or failure.tenant_id}: {failure.reason}")
    if result.skipped_tenants:
        print(f"  Skipped {len(result.skipped_tenants)} tenant(s)")
    if result.aborted_reason:
        print(f"  Run aborted: {result.aborted_reason}")
    if result.cancelled:
        print("  Run cancelled by user")
    print(f"JSON: {json_path}\nCSV: {csv_path}")


def cmd_auth(settings: Settings) -> None:
    from src.browser.session import interactive_login

    path = asyncio.run(interactive_login(settings))
    print(f"Session saved to {path}")


def cmd_auth_cookie(settings: Settings, cookie: str | None) -> None:
    header = cookie if cookie is not None else input("Paste the Cookie header: ")
    session = session_from_cookie_header(header)
    if not session.has_auth_cookie(settings.session.auth_cookie_names):
        print("Warning: none of the configured auth cookies are present", file=sys.stderr)
    path = save_session(session, settings.session.path)
    print(f"Session saved to {path} ({len(session.cookies)} cookies)")


def cmd_recon(settings: Settings) -> None:
    from src.browser.recon import run_recon

    session = load_session(settings.session.path, settings.session.auth_cookie_names)
    path = asyncio.run(run_recon(settings, session))
    print(f"Recon log saved to {path}")


def cmd_extract(settings: Settings, args: argparse.Namespace) -> int:
    settings = apply_overrides(settings, args)
    if args.dry_run:
        dry_run(settings)
        return 0

    result = asyncio.run(run(settings))
    report(result, settings)
    if result.aborted_reason or result.status is RunStatus.COMPLETE_FAILURE:
        return 1
    return 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "auth":
            cmd_auth(settings)
        elif args.command == "auth-cookie":
            cmd_auth_cookie(settings, args.cookie)
        elif args.command == "recon":
            cmd_recon(settings)
        else:
            sys.exit(cmd_extract(settings, args))
    except ValidationError as e:
        print(f"Invalid option: {e}", file=sys.stderr)
        sys.exit(1)
    except ExtractionError as e:
        print(f"Error ({e.code}): {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
