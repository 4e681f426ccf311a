#!/usr/bin/env python3
"""
HubSpot Incremental Sync CLI

Usage:
    hs-sync sync           # Pull everything changed since the last run
    hs-sync status         # Show accounts and their watermarks
    hs-sync test           # Refresh each account's token and probe the API
"""

import argparse
import json
import signal
import sys
from pathlib import Path

from colorama import Fore, Style, init

from hubspot_sync.associations import AssociationResolver
from hubspot_sync.backoff import BackoffExecutor
from hubspot_sync.batcher import EventBatcher
from hubspot_sync.client import HubSpotClient
from hubspot_sync.config import SyncSettings, configure_logging, load_settings
from hubspot_sync.models import ResourceType
from hubspot_sync.pager import WindowedPager
from hubspot_sync.store import JsonLinesEventSink, JsonTenantStore, PersistenceError
from hubspot_sync.sync import NoAccountsError, SyncOrchestrator
from hubspot_sync.tokens import AuthRefreshError, TokenManager

init()
GREEN = Fore.GREEN
RED = Fore.RED
YELLOW = Fore.YELLOW
BLUE = Fore.CYAN
RESET = Style.RESET_ALL
BOLD = Style.BRIGHT

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_ACCOUNTS = 2


def print_success(msg: str):
    print(f"{GREEN}✓ {msg}{RESET}")


def print_error(msg: str):
    print(f"{RED}✗ {msg}{RESET}")


def print_warning(msg: str):
    print(f"{YELLOW}⚠ {msg}{RESET}")


def print_info(msg: str):
    print(f"{BLUE}ℹ {msg}{RESET}")


def require_oauth(settings: SyncSettings) -> bool:
    if settings.has_oauth_credentials:
        return True
    print_error("HubSpot app credentials not configured.")
    print_info("Set environment variables:")
    print("    export HUBSPOT_CID=your-client-id")
    print("    export HUBSPOT_CS=your-client-secret")
    return False


def build_orchestrator(
    settings: SyncSettings,
    client: HubSpotClient,
    tenant_key: str | None = None,
) -> SyncOrchestrator:
    """Wire the sync engine from settings."""
    tokens = TokenManager(client, settings.client_id, settings.client_secret)
    executor = BackoffExecutor(
        tokens,
        max_retries=settings.max_retries,
        base_delay=settings.base_delay_seconds,
    )
    batcher = EventBatcher(
        JsonLinesEventSink(settings.events_file),
        threshold=settings.batch_threshold,
        max_in_flight=settings.max_in_flight_flushes,
        tenant_key=tenant_key,
    )
    return SyncOrchestrator(
        store=JsonTenantStore(settings.tenant_file),
        token_manager=tokens,
        pager=WindowedPager(
            client,
            executor,
            page_size=settings.page_size,
            offset_ceiling=settings.offset_ceiling,
        ),
        resolver=AssociationResolver(client, executor),
        batcher=batcher,
    )


def cmd_sync(args, settings: SyncSettings) -> int:
    """Run one incremental sync."""
    if not require_oauth(settings):
        return EXIT_FAILED

    try:
        domain = JsonTenantStore(settings.tenant_file).load_domain()
    except PersistenceError as e:
        print_error(str(e))
        return EXIT_FAILED

    client = HubSpotClient(
        requests_per_interval=settings.requests_per_interval,
        interval_seconds=settings.interval_seconds,
    )

    with client:
        orchestrator = build_orchestrator(settings, client, tenant_key=domain.api_key)

        def request_stop(signum, frame):
            print_warning("Stopping after the current resource pass...")
            orchestrator.cancel()

        signal.signal(signal.SIGINT, request_stop)
        signal.signal(signal.SIGTERM, request_stop)

        try:
            report = orchestrator.run()
        except NoAccountsError as e:
            print_error(str(e))
            return EXIT_NO_ACCOUNTS
        except PersistenceError as e:
            print_error(str(e))
            return EXIT_FAILED
        finally:
            orchestrator.batcher.close()

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return EXIT_OK

    print(f"\n{BOLD}Sync complete{RESET}")
    print(f"  Events persisted: {report.events_persisted}")
    for account in report.accounts:
        if account.ok:
            print_success(f"Hub {account.hub_id}: {account.events_emitted} events")
            continue
        print_warning(f"Hub {account.hub_id}: {account.events_emitted} events, with errors")
        if account.auth_error:
            print(f"    - auth: {account.auth_error}")
        for resource, error in account.failed.items():
            print(f"    - {resource.value}: {error}")

    if report.cancelled:
        print_warning("Run was cancelled before every account finished")

    return EXIT_OK


def cmd_status(args, settings: SyncSettings) -> int:
    """Show watermarks per account."""
    try:
        domain = JsonTenantStore(settings.tenant_file).load_domain()
    except PersistenceError as e:
        print_error(str(e))
        return EXIT_FAILED

    print(f"{BOLD}Sync Status{RESET}\n")
    if not domain.accounts:
        print_warning("  No accounts configured")
        return EXIT_NO_ACCOUNTS

    for account in domain.accounts:
        print(f"  Hub {account.hub_id}")
        for resource in ResourceType:
            pulled = account.last_pulled_dates.get(resource)
            when = pulled.strftime("%Y-%m-%d %H:%M:%S UTC") if pulled else "never"
            print(f"    {resource.value:<10} {when}")

    return EXIT_OK


def cmd_test(args, settings: SyncSettings) -> int:
    """Refresh each account's token and make one cheap call."""
    if not require_oauth(settings):
        return EXIT_FAILED

    try:
        domain = JsonTenantStore(settings.tenant_file).load_domain()
    except PersistenceError as e:
        print_error(str(e))
        return EXIT_FAILED

    if not domain.accounts:
        print_error("No accounts configured")
        return EXIT_NO_ACCOUNTS

    failures = 0
    with HubSpotClient() as client:
        tokens = TokenManager(client, settings.client_id, settings.client_secret)
        for account in domain.accounts:
            try:
                tokens.refresh(account)
            except AuthRefreshError as e:
                print_error(f"Hub {account.hub_id}: {e}")
                failures += 1
                continue

            result = client.health_check(account.credential)
            if result["status"] == "healthy":
                print_success(f"Hub {account.hub_id}: connected")
            else:
                print_error(f"Hub {account.hub_id}: {result.get('message', 'unknown error')}")
                failures += 1

    return EXIT_FAILED if failures else EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Incremental HubSpot sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hs-sync sync           Pull changes since the last run
  hs-sync sync --json    Same, printing the run report as JSON
  hs-sync status         Show watermarks
  hs-sync test           Check every account's credentials
        """,
    )
    parser.add_argument("--config", help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    sync_parser = subparsers.add_parser("sync", help="Run an incremental sync")
    sync_parser.add_argument("--json", action="store_true", help="Print the run report as JSON")

    subparsers.add_parser("status", help="Show sync status")
    subparsers.add_parser("test", help="Test account credentials")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    try:
        settings = load_settings(Path(args.config) if args.config else None)
    except (OSError, ValueError) as e:
        # ValueError covers malformed JSON and pydantic validation errors
        print_error(f"Invalid configuration: {e}")
        return EXIT_FAILED

    configure_logging(settings.log_level, settings.json_logs)

    commands = {
        "sync": cmd_sync,
        "status": cmd_status,
        "test": cmd_test,
    }

    return commands[args.command](args, settings)


if __name__ == "__main__":
    sys.exit(main())
