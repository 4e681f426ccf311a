"""
Pydantic models for HubSpot API payloads and sync state.

API models parse the CRM v3/v4 JSON shapes; the tenant models (Domain,
Account, Credential) are what the tenant store persists between runs.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ResourceType(str, Enum):
    """Resource types synced per account, in pass order."""

    CONTACTS = "contacts"
    COMPANIES = "companies"
    MEETINGS = "meetings"


class EventKind(str, Enum):
    """Event names emitted to the sink."""

    CONTACT_CREATED = "Contact Created"
    CONTACT_UPDATED = "Contact Updated"
    COMPANY_CREATED = "Company Created"
    COMPANY_UPDATED = "Company Updated"
    MEETING_CREATED = "Meeting Created"
    MEETING_UPDATED = "Meeting Updated"


# ---------------------------------------------------------------------------
# Tenant state
# ---------------------------------------------------------------------------


class Credential(BaseModel):
    """Account-scoped access token and its absolute expiry."""

    access_token: str | None = None
    expires_at: datetime | None = None


class Account(BaseModel):
    """One HubSpot portal connection belonging to a domain."""

    hub_id: str
    refresh_token: str
    credential: Credential = Field(default_factory=Credential)
    last_pulled_dates: dict[ResourceType, datetime] = Field(default_factory=dict)

    @field_validator("hub_id", mode="before")
    @classmethod
    def coerce_hub_id(cls, v: Any) -> str:
        """Portal ids are numeric in HubSpot but handled as strings here."""
        return str(v)


class Domain(BaseModel):
    """Tenant record: billing key plus its HubSpot accounts."""

    api_key: str | None = None
    accounts: list[Account] = Field(default_factory=list)

    def get_account(self, hub_id: str) -> Account | None:
        for account in self.accounts:
            if account.hub_id == hub_id:
                return account
        return None


# ---------------------------------------------------------------------------
# CRM objects
# ---------------------------------------------------------------------------


class CrmRecord(BaseModel):
    """A CRM object as returned by search or basic GET endpoints."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    properties: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = Field(None, alias="createdAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")
    archived: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)

    def prop(self, name: str) -> Any:
        return self.properties.get(name)


class PagingNext(BaseModel):
    after: str | None = None
    link: str | None = None


class Paging(BaseModel):
    next: PagingNext | None = None


class SearchPage(BaseModel):
    """Response from POST /crm/v3/objects/{type}/search"""

    total: int = 0
    results: list[CrmRecord] = Field(default_factory=list)
    paging: Paging | None = None

    @property
    def next_cursor(self) -> str | None:
        if self.paging and self.paging.next and self.paging.next.after:
            return self.paging.next.after
        return None

    @property
    def next_offset(self) -> int | None:
        """
        Numeric value of the continuation cursor.

        Search cursors are plain offsets into the result set; a missing or
        non-numeric cursor ends the pass.
        """
        cursor = self.next_cursor
        if cursor is None:
            return None
        try:
            offset = int(cursor)
        except ValueError:
            return None
        return offset or None


class FilterCondition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    property_name: str = Field(alias="propertyName")
    operator: str
    value: str


class FilterGroup(BaseModel):
    filters: list[FilterCondition] = Field(default_factory=list)


class SortOrder(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    property_name: str = Field(alias="propertyName")
    direction: str = "ASCENDING"


class SearchRequest(BaseModel):
    """Body of a CRM search call."""

    model_config = ConfigDict(populate_by_name=True)

    filter_groups: list[FilterGroup] = Field(default_factory=list, alias="filterGroups")
    sorts: list[SortOrder] = Field(default_factory=list)
    properties: list[str] = Field(default_factory=list)
    limit: int = 100
    after: str | None = None

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Associations
# ---------------------------------------------------------------------------


class ObjectRef(BaseModel):
    id: str
    type: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)


class AssociationBatchItem(BaseModel):
    """One entry of a v3 batch association read."""

    model_config = ConfigDict(populate_by_name=True)

    from_: ObjectRef | None = Field(None, alias="from")
    to: list[ObjectRef] = Field(default_factory=list)


class AssociationBatchResponse(BaseModel):
    """Response from POST /crm/v3/associations/{from}/{to}/batch/read"""

    status: str | None = None
    results: list[AssociationBatchItem] = Field(default_factory=list)


class AssociationTarget(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to_object_id: str = Field(alias="toObjectId")

    @field_validator("to_object_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return str(v)


class AssociationListResponse(BaseModel):
    """Response from GET /crm/v4/objects/{type}/{id}/associations/{to}"""

    results: list[AssociationTarget] = Field(default_factory=list)
    paging: Paging | None = None


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


class TokenGrant(BaseModel):
    """Response from POST /oauth/v1/token"""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str
    expires_in: int
    refresh_token: str | None = None
    token_type: str | None = None


# ---------------------------------------------------------------------------
# Emitted events
# ---------------------------------------------------------------------------


class Event(BaseModel):
    """A sync event handed to the event sink."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    occurred_at: datetime
    identity: str
    properties: dict[str, Any] = Field(default_factory=dict)
    include_in_analytics: bool = False
