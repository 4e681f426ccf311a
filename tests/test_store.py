"""
Tests for the JSON tenant store and event sink.
"""

import json
from datetime import timedelta

import pytest

from conftest import NOW
from hubspot_sync.models import Account, Credential, Domain, Event, EventKind, ResourceType
from hubspot_sync.store import JsonLinesEventSink, JsonTenantStore, PersistenceError


@pytest.fixture
def tenant_file(tmp_path):
    return tmp_path / "state" / "tenant.json"


class TestJsonTenantStore:
    def test_missing_file_gives_empty_domain(self, tenant_file):
        domain = JsonTenantStore(tenant_file).load_domain()
        assert domain.accounts == []

    def test_save_and_reload(self, tenant_file, account):
        store = JsonTenantStore(tenant_file)
        domain = Domain(api_key="billing-key", accounts=[account])
        account.last_pulled_dates[ResourceType.CONTACTS] = NOW

        store.save_account(domain, account)
        loaded = JsonTenantStore(tenant_file).load_domain()

        reloaded = loaded.get_account("12345")
        assert loaded.api_key == "billing-key"
        assert reloaded.refresh_token == "refresh-abc"
        assert reloaded.credential.access_token == "token-0"
        assert reloaded.last_pulled_dates[ResourceType.CONTACTS] == NOW
        assert reloaded.last_pulled_dates[ResourceType.MEETINGS] == NOW - timedelta(days=1)
        assert not tenant_file.with_suffix(".tmp").exists()

    def test_reads_numeric_hub_ids(self, tenant_file):
        tenant_file.parent.mkdir(parents=True)
        tenant_file.write_text(json.dumps({
            "api_key": "k",
            "accounts": [{"hub_id": 4242, "refresh_token": "r"}],
        }))

        domain = JsonTenantStore(tenant_file).load_domain()

        assert domain.get_account("4242") is not None
        assert domain.get_account("4242").last_pulled_dates == {}

    def test_corrupt_file_raises(self, tenant_file):
        tenant_file.parent.mkdir(parents=True)
        tenant_file.write_text("{not json")

        with pytest.raises(PersistenceError):
            JsonTenantStore(tenant_file).load_domain()

    def test_unwritable_location_raises(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = JsonTenantStore(blocker / "tenant.json")
        account = Account(hub_id="1", refresh_token="r", credential=Credential())

        with pytest.raises(PersistenceError):
            store.save_account(Domain(accounts=[account]), account)


class TestJsonLinesEventSink:
    def test_appends_events(self, tmp_path):
        path = tmp_path / "events.jsonl"
        sink = JsonLinesEventSink(path)
        first = Event(kind=EventKind.CONTACT_CREATED, occurred_at=NOW, identity="a@acme.com")
        second = Event(
            kind=EventKind.COMPANY_UPDATED,
            occurred_at=NOW,
            identity="301",
            properties={"company_domain": "acme.com"},
        )

        assert sink.persist([first]) == 1
        assert sink.persist([second]) == 1

        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert [line["kind"] for line in lines] == ["Contact Created", "Company Updated"]
        assert lines[1]["properties"] == {"company_domain": "acme.com"}
        assert lines[0]["include_in_analytics"] is False

    def test_empty_batch_writes_nothing(self, tmp_path):
        path = tmp_path / "events.jsonl"
        assert JsonLinesEventSink(path).persist([]) == 0
        assert not path.exists()
