"""
Sync Orchestrator

Walks every account of the domain through its resource passes:

    CONTACTS_PENDING -> COMPANIES_PENDING -> MEETINGS_PENDING -> DONE

A failed pass is recorded and the account moves on; a failed token
refresh ends the account. Nothing raised while processing one account
reaches the next. Watermarks only advance after a pass completes.
"""

import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

import structlog

from hubspot_sync.associations import AssociationResolver
from hubspot_sync.backoff import RetriesExhausted
from hubspot_sync.batcher import EventBatcher
from hubspot_sync.client import HubSpotAPIError
from hubspot_sync.events import EventBuilder
from hubspot_sync.models import Account, CrmRecord, Domain, Event, ResourceType
from hubspot_sync.pager import PaginationStalledError, WindowedPager
from hubspot_sync.resources import RESOURCES, ResourceSpec
from hubspot_sync.store import PersistenceError, TenantStore
from hubspot_sync.tokens import AuthRefreshError, TokenManager, utcnow

logger = structlog.get_logger(__name__)

PASS_ORDER = (ResourceType.CONTACTS, ResourceType.COMPANIES, ResourceType.MEETINGS)

# Errors that fail a single resource pass
PASS_ERRORS = (RetriesExhausted, HubSpotAPIError, PaginationStalledError)


class NoAccountsError(Exception):
    """Raised when the domain has no HubSpot accounts to sync."""
    pass


class AccountState(str, Enum):
    CONTACTS_PENDING = "contacts_pending"
    COMPANIES_PENDING = "companies_pending"
    MEETINGS_PENDING = "meetings_pending"
    DONE = "done"


PENDING_STATES = {
    ResourceType.CONTACTS: AccountState.CONTACTS_PENDING,
    ResourceType.COMPANIES: AccountState.COMPANIES_PENDING,
    ResourceType.MEETINGS: AccountState.MEETINGS_PENDING,
}


@dataclass
class AccountReport:
    """Outcome of one account's passes."""

    hub_id: str
    state: AccountState = AccountState.CONTACTS_PENDING
    completed: list[ResourceType] = field(default_factory=list)
    failed: dict[ResourceType, str] = field(default_factory=dict)
    events_emitted: int = 0
    auth_error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.failed and self.auth_error is None


@dataclass
class SyncRunReport:
    started_at: datetime
    finished_at: datetime | None = None
    accounts: list[AccountReport] = field(default_factory=list)
    events_persisted: int = 0
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.cancelled and all(report.ok for report in self.accounts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "events_persisted": self.events_persisted,
            "cancelled": self.cancelled,
            "accounts": [
                {
                    "hub_id": report.hub_id,
                    "state": report.state.value,
                    "completed": [r.value for r in report.completed],
                    "failed": {r.value: error for r, error in report.failed.items()},
                    "events_emitted": report.events_emitted,
                    "auth_error": report.auth_error,
                }
                for report in self.accounts
            ],
        }


class SyncOrchestrator:
    """
    Runs one incremental sync over every account of the tenant.

    Example:
        orchestrator = SyncOrchestrator(store, tokens, pager, resolver, batcher)
        report = orchestrator.run()
    """

    def __init__(
        self,
        store: TenantStore,
        token_manager: TokenManager,
        pager: WindowedPager,
        resolver: AssociationResolver,
        batcher: EventBatcher,
        builder: EventBuilder | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.token_manager = token_manager
        self.pager = pager
        self.resolver = resolver
        self.batcher = batcher
        self.builder = builder or EventBuilder()
        self._clock = clock
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop at the next pass boundary; in-flight work finishes."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self) -> SyncRunReport:
        """
        Sync every account, then wait for all event flushes.

        Raises:
            NoAccountsError: If the domain has no accounts configured
        """
        logger.info("Start pulling data from HubSpot")
        domain = self.store.load_domain()
        if not domain.accounts:
            raise NoAccountsError("No HubSpot accounts configured for this domain")

        report = SyncRunReport(started_at=self._clock())

        try:
            for account in domain.accounts:
                if self.cancelled:
                    report.cancelled = True
                    break
                report.accounts.append(self._sync_account(domain, account))
        finally:
            report.events_persisted = self.batcher.flush()
            report.finished_at = self._clock()

        if self.cancelled:
            report.cancelled = True

        logger.info(
            "Finished pulling data from HubSpot",
            api_key=domain.api_key,
            accounts=len(report.accounts),
            events_persisted=report.events_persisted,
            cancelled=report.cancelled,
        )
        return report

    def _sync_account(self, domain: Domain, account: Account) -> AccountReport:
        report = AccountReport(hub_id=account.hub_id)
        log = logger.bind(hub_id=account.hub_id, api_key=domain.api_key)
        log.info("Start processing account")
        current = PASS_ORDER[0]

        try:
            self.token_manager.refresh(account)

            for resource in PASS_ORDER:
                if self.cancelled:
                    log.warning("Sync cancelled", state=report.state.value)
                    return report

                current = resource
                report.state = PENDING_STATES[resource]
                operation = f"process_{resource.value}"
                try:
                    report.events_emitted += self._sync_resource(domain, account, RESOURCES[resource])
                    report.completed.append(resource)
                    log.info("Resource processed", resource=resource.value)
                except PASS_ERRORS as e:
                    report.failed[resource] = str(e)
                    log.error("Resource sync failed", operation=operation, error=str(e))

            report.state = AccountState.DONE
        except AuthRefreshError as e:
            report.auth_error = str(e)
            log.error("Token refresh failed, skipping account", error=str(e))
        except Exception as e:
            report.failed[current] = str(e)
            log.exception("Unexpected error while processing account", resource=current.value)

        log.info("Finish processing account", state=report.state.value)
        return report

    # -------------------------------------------------------------------------
    # Resource passes
    # -------------------------------------------------------------------------

    def _sync_resource(self, domain: Domain, account: Account, resource: ResourceSpec) -> int:
        """
        Run one full pass and advance the watermark.

        Returns number of events pushed to the batcher.
        """
        last_pulled = account.last_pulled_dates.get(resource.resource)
        now = self._clock()
        emitted = 0

        for page in self.pager.paginate(resource, account, since=last_pulled, until=now):
            for event in self._events_for_page(account, resource, page.records, last_pulled):
                self.batcher.push(event)
                emitted += 1

        account.last_pulled_dates[resource.resource] = now
        try:
            self.store.save_account(domain, account)
        except PersistenceError as e:
            logger.error(
                "Failed to persist watermark",
                hub_id=account.hub_id,
                api_key=domain.api_key,
                resource=resource.name,
                error=str(e),
            )

        return emitted

    def _events_for_page(
        self,
        account: Account,
        resource: ResourceSpec,
        records: list[CrmRecord],
        last_pulled: datetime | None,
    ) -> Iterator[Event]:
        if not records:
            return

        if resource.resource is ResourceType.CONTACTS:
            companies = self.resolver.resolve(account, records, "contacts", "companies")
            for record in records:
                event = self.builder.build_contact_event(record, last_pulled, companies.get(record.id))
                if event:
                    yield event

        elif resource.resource is ResourceType.COMPANIES:
            for record in records:
                event = self.builder.build_company_event(record, last_pulled)
                if event:
                    yield event

        elif resource.resource is ResourceType.MEETINGS:
            attendees = self.resolver.resolve_each(account, records, "meetings", "contacts")
            for record in records:
                event = self.builder.build_meeting_event(record, last_pulled, attendees.get(record.id, []))
                if event:
                    yield event
