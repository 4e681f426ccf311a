"""
Pytest configuration and fixtures for HubSpot sync tests.
"""

import copy
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from hubspot_sync.backoff import BackoffExecutor
from hubspot_sync.client import HubSpotNotFoundError, parse_response
from hubspot_sync.models import (
    Account,
    AssociationBatchItem,
    CrmRecord,
    Credential,
    Domain,
    ResourceType,
    SearchPage,
    TokenGrant,
)
from hubspot_sync.tokens import TokenManager

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def make_record(record_id, created_at, updated_at=None, **properties) -> dict:
    """Raw CRM object as returned by the search API."""
    return {
        "id": str(record_id),
        "properties": properties,
        "createdAt": iso(created_at),
        "updatedAt": iso(updated_at or created_at),
        "archived": False,
    }


def make_page(records: list[dict], after: str | None = None) -> SearchPage:
    data = {"total": len(records), "results": records}
    if after is not None:
        data["paging"] = {"next": {"after": after}}
    return SearchPage.model_validate(data)


class FakeClock:
    """Settable clock for token expiry and watermarks."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeHubSpotClient:
    """In-memory stand-in for HubSpotClient."""

    def __init__(self):
        self.search_responses: dict[str, list] = {}
        self.search_calls: list[tuple[str, object]] = []
        self.company_associations: dict[str, str] = {}
        self.batch_association_calls: list[list[str]] = []
        self.meeting_contacts: dict[str, list[str]] = {}
        self.contacts: dict[str, dict] = {}
        self.get_object_calls: list[str] = []

        self.refresh_calls = 0
        self.refresh_error: Exception | None = None
        self.refresh_delay = 0.0
        self.expires_in = 1800
        self.on_search = None
        self._lock = threading.Lock()

    def queue_search(self, object_type: str, *responses) -> None:
        self.search_responses.setdefault(object_type, []).extend(responses)

    def search(self, credential, object_type, request):
        self.search_calls.append((object_type, request))
        if self.on_search:
            self.on_search(object_type, request)
        queue = self.search_responses.get(object_type, [])
        response = queue.pop(0) if queue else make_page([])
        if isinstance(response, dict):
            return parse_response(SearchPage, response)
        if isinstance(response, Exception):
            raise response
        return response

    def batch_read_associations(self, credential, from_type, to_type, object_ids):
        self.batch_association_calls.append(list(object_ids))
        return [
            AssociationBatchItem.model_validate(
                {"from": {"id": object_id}, "to": [{"id": self.company_associations[object_id]}]}
            )
            for object_id in object_ids
            if object_id in self.company_associations
        ]

    def get_associations(self, credential, object_type, object_id, to_type):
        return list(self.meeting_contacts.get(object_id, []))

    def get_object(self, credential, object_type, object_id, properties=None):
        self.get_object_calls.append(object_id)
        if object_id not in self.contacts:
            raise HubSpotNotFoundError("gone", status_code=404)
        return CrmRecord.model_validate(self.contacts[object_id])

    def refresh_access_token(self, client_id, client_secret, refresh_token):
        if self.refresh_delay:
            time.sleep(self.refresh_delay)
        with self._lock:
            self.refresh_calls += 1
            count = self.refresh_calls
        if self.refresh_error:
            raise self.refresh_error
        return TokenGrant(access_token=f"token-{count}", expires_in=self.expires_in)


class MemoryTenantStore:
    def __init__(self, domain: Domain):
        self.domain = domain
        self.saves: list[tuple[str, dict]] = []

    def load_domain(self) -> Domain:
        return self.domain

    def save_account(self, domain, account) -> None:
        self.saves.append((account.hub_id, copy.deepcopy(account.last_pulled_dates)))


class MemorySink:
    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.batches: list[list] = []
        self.fail = fail
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def persist(self, events) -> int:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.fail:
                raise OSError("disk full")
            with self._lock:
                self.batches.append(list(events))
            return len(events)
        finally:
            with self._lock:
                self.active -= 1

    @property
    def events(self) -> list:
        return [event for batch in self.batches for event in batch]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_client():
    return FakeHubSpotClient()


@pytest.fixture
def account():
    """Account with a valid token and watermarks one day old."""
    return Account(
        hub_id="12345",
        refresh_token="refresh-abc",
        credential=Credential(access_token="token-0", expires_at=NOW + timedelta(hours=1)),
        last_pulled_dates={
            ResourceType.CONTACTS: NOW - timedelta(days=1),
            ResourceType.COMPANIES: NOW - timedelta(days=1),
            ResourceType.MEETINGS: NOW - timedelta(days=1),
        },
    )


@pytest.fixture
def token_manager(fake_client, clock):
    return TokenManager(fake_client, client_id="cid", client_secret="secret", clock=clock)


@pytest.fixture
def delays():
    return []


@pytest.fixture
def executor(token_manager, delays):
    return BackoffExecutor(token_manager, max_retries=4, base_delay=1.0, sleep=delays.append)


@pytest.fixture
def sample_contact_data():
    return make_record(
        101,
        created_at=NOW - timedelta(hours=2),
        updated_at=NOW - timedelta(hours=1),
        email="jane@acme.com",
        firstname="Jane",
        lastname="Doe",
        jobtitle="CTO",
        hubspotscore="42",
        hs_lead_status="OPEN",
        hs_analytics_source="ORGANIC_SEARCH",
        lastmodifieddate=iso(NOW - timedelta(hours=1)),
    )


@pytest.fixture
def sample_company_data():
    return make_record(
        301,
        created_at=NOW - timedelta(days=30),
        updated_at=NOW - timedelta(hours=3),
        name="Acme Corporation",
        domain="acme.com",
        industry="COMPUTER_SOFTWARE",
        country="Unknown",
    )


@pytest.fixture
def sample_meeting_data():
    return make_record(
        501,
        created_at=NOW - timedelta(hours=5),
        updated_at=NOW - timedelta(hours=4),
        hs_meeting_title="Quarterly review",
        hs_createdate=iso(NOW - timedelta(hours=5)),
        hs_lastmodifieddate=iso(NOW - timedelta(hours=4)),
    )
