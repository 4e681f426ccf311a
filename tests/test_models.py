"""
Tests for HubSpot Pydantic models.
"""

from datetime import timedelta

from conftest import NOW, make_page
from hubspot_sync.models import (
    Account,
    AssociationBatchResponse,
    AssociationListResponse,
    CrmRecord,
    Domain,
    FilterCondition,
    FilterGroup,
    ResourceType,
    SearchRequest,
    SortOrder,
    TokenGrant,
)


class TestCrmRecord:
    """Tests for CrmRecord model."""

    def test_parse_record(self, sample_contact_data):
        record = CrmRecord.model_validate(sample_contact_data)

        assert record.id == "101"
        assert record.prop("email") == "jane@acme.com"
        assert record.created_at.tzinfo is not None
        assert record.updated_at > record.created_at

    def test_numeric_id_coerced(self):
        record = CrmRecord.model_validate({"id": 7, "properties": {}})
        assert record.id == "7"

    def test_missing_property(self, sample_contact_data):
        record = CrmRecord.model_validate(sample_contact_data)
        assert record.prop("does_not_exist") is None


class TestSearchPage:
    """Tests for search response paging."""

    def test_next_offset(self, sample_contact_data):
        page = make_page([sample_contact_data], after="100")
        assert page.next_cursor == "100"
        assert page.next_offset == 100
        assert len(page.results) == 1

    def test_no_paging_ends_pass(self, sample_contact_data):
        page = make_page([sample_contact_data])
        assert page.next_cursor is None
        assert page.next_offset is None

    def test_zero_offset_ends_pass(self):
        assert make_page([], after="0").next_offset is None

    def test_non_numeric_cursor_ends_pass(self):
        assert make_page([], after="abc").next_offset is None


class TestSearchRequest:
    """Tests for search request serialization."""

    def test_body_uses_api_field_names(self):
        request = SearchRequest(
            filter_groups=[
                FilterGroup(filters=[FilterCondition(property_name="hs_lastmodifieddate", operator="GTE", value="1")])
            ],
            sorts=[SortOrder(property_name="hs_lastmodifieddate")],
            properties=["name"],
            limit=100,
        )
        body = request.to_body()

        assert body["filterGroups"][0]["filters"][0]["propertyName"] == "hs_lastmodifieddate"
        assert body["sorts"] == [{"propertyName": "hs_lastmodifieddate", "direction": "ASCENDING"}]
        assert body["limit"] == 100
        assert "after" not in body

    def test_body_includes_cursor(self):
        assert SearchRequest(after="200").to_body()["after"] == "200"


class TestAssociations:
    """Tests for association payloads."""

    def test_batch_response(self):
        response = AssociationBatchResponse.model_validate({
            "status": "COMPLETE",
            "results": [
                {"from": {"id": "101"}, "to": [{"id": 301, "type": "contact_to_company"}]},
            ],
        })
        item = response.results[0]
        assert item.from_.id == "101"
        assert item.to[0].id == "301"

    def test_list_response(self):
        response = AssociationListResponse.model_validate({
            "results": [{"toObjectId": 201, "associationTypes": []}],
        })
        assert response.results[0].to_object_id == "201"


class TestTenantModels:
    """Tests for Domain and Account."""

    def test_account_parses_watermarks(self):
        account = Account.model_validate({
            "hub_id": 12345,
            "refresh_token": "r",
            "last_pulled_dates": {"contacts": "2024-03-01T12:00:00Z"},
        })

        assert account.hub_id == "12345"
        assert account.last_pulled_dates[ResourceType.CONTACTS] == NOW
        assert ResourceType.MEETINGS not in account.last_pulled_dates
        assert account.credential.access_token is None

    def test_domain_get_account(self, account):
        domain = Domain(api_key="billing-key", accounts=[account])
        assert domain.get_account("12345") is account
        assert domain.get_account("999") is None

    def test_domain_json_round_trip(self, account):
        domain = Domain(api_key="billing-key", accounts=[account])
        restored = Domain.model_validate_json(domain.model_dump_json())

        restored_account = restored.accounts[0]
        assert restored_account.last_pulled_dates == account.last_pulled_dates
        assert restored_account.credential.expires_at.utcoffset() == timedelta(0)


class TestTokenGrant:
    def test_parse_oauth_response(self):
        grant = TokenGrant.model_validate({
            "token_type": "bearer",
            "refresh_token": "new-refresh",
            "access_token": "abc",
            "expires_in": 1800,
        })
        assert grant.access_token == "abc"
        assert grant.expires_in == 1800
