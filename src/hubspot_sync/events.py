"""
Event Builder for HubSpot Records

Converts CRM records into sync events. Each resource type maps to a
Created/Updated event pair; property maps are stripped of empty values
and the placeholder strings HubSpot portals tend to accumulate.
"""

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from hubspot_sync.models import CrmRecord, Event, EventKind, ResourceType

# Compared case-insensitively against string property values
DISALLOWED_VALUES = frozenset({
    "[not provided]",
    "placeholder",
    "[[unknown]]",
    "not set",
    "not provided",
    "unknown",
    "undefined",
    "n/a",
    "",
})

# Unrendered personalization tokens, e.g. "{{ contact.!$record... }}"
UNRESOLVED_TOKEN_MARKER = "!$record"

# Company and meeting events are stamped slightly earlier than the record
# time so they sort ahead of contact events from the same moment.
SECONDARY_EVENT_OFFSET = timedelta(seconds=2)

EVENT_KINDS: dict[ResourceType, tuple[EventKind, EventKind]] = {
    ResourceType.CONTACTS: (EventKind.CONTACT_CREATED, EventKind.CONTACT_UPDATED),
    ResourceType.COMPANIES: (EventKind.COMPANY_CREATED, EventKind.COMPANY_UPDATED),
    ResourceType.MEETINGS: (EventKind.MEETING_CREATED, EventKind.MEETING_UPDATED),
}


def _is_allowed(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        lowered = value.lower()
        return lowered not in DISALLOWED_VALUES and UNRESOLVED_TOKEN_MARKER not in lowered
    return True


def filter_properties(properties: dict[str, Any]) -> dict[str, Any]:
    """
    Drop null, empty and placeholder values.

    >>> filter_properties({"name": "Unknown", "email": "a@b.com"})
    {'email': 'a@b.com'}
    """
    return {key: value for key, value in properties.items() if _is_allowed(value)}


def _ensure_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_created(record: CrmRecord, last_pulled: datetime | None) -> bool:
    """A record is new iff it was created strictly after the last watermark."""
    if last_pulled is None:
        return True
    created_at = _ensure_utc(record.created_at)
    if created_at is None:
        return False
    return created_at > _ensure_utc(last_pulled)


def classify_event(
    resource: ResourceType,
    record: CrmRecord,
    last_pulled: datetime | None,
) -> tuple[EventKind, datetime | None]:
    """Pick the event kind and its timestamp for a record."""
    created_kind, updated_kind = EVENT_KINDS[resource]
    if is_created(record, last_pulled):
        return created_kind, _ensure_utc(record.created_at)
    return updated_kind, _ensure_utc(record.updated_at or record.created_at)


def _parse_score(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


class EventBuilder:
    """
    Builds events from CRM records.

    `last_pulled` is the watermark in effect when the pass started; every
    record in the pass is classified against it.
    """

    def build_contact_event(
        self,
        record: CrmRecord,
        last_pulled: datetime | None,
        company_id: str | None = None,
    ) -> Event | None:
        """Contacts without an email have no identity and yield no event."""
        email = record.prop("email")
        if not record.properties or not email:
            return None

        kind, occurred_at = classify_event(ResourceType.CONTACTS, record, last_pulled)
        if occurred_at is None:
            return None

        name = f"{record.prop('firstname') or ''} {record.prop('lastname') or ''}".strip()
        properties = {
            "company_id": company_id,
            "contact_name": name,
            "contact_title": record.prop("jobtitle"),
            "contact_source": record.prop("hs_analytics_source"),
            "contact_status": record.prop("hs_lead_status"),
            "contact_score": _parse_score(record.prop("hubspotscore")),
        }

        return Event(
            kind=kind,
            occurred_at=occurred_at,
            identity=email,
            properties=filter_properties(properties),
        )

    def build_company_event(
        self,
        record: CrmRecord,
        last_pulled: datetime | None,
    ) -> Event | None:
        if not record.properties:
            return None

        kind, occurred_at = classify_event(ResourceType.COMPANIES, record, last_pulled)
        if occurred_at is None:
            return None

        properties = {
            "company_id": record.id,
            "company_domain": record.prop("domain"),
            "company_industry": record.prop("industry"),
        }

        return Event(
            kind=kind,
            occurred_at=occurred_at - SECONDARY_EVENT_OFFSET,
            identity=record.id,
            properties=filter_properties(properties),
        )

    def build_meeting_event(
        self,
        record: CrmRecord,
        last_pulled: datetime | None,
        contacts: Sequence[CrmRecord] = (),
    ) -> Event | None:
        kind, occurred_at = classify_event(ResourceType.MEETINGS, record, last_pulled)
        if occurred_at is None:
            return None

        emails = [contact.prop("email") for contact in contacts if contact.prop("email")]
        properties = {
            "meeting_id": record.id,
            "meeting_title": record.prop("hs_meeting_title"),
            "meeting_createdate": record.prop("hs_createdate"),
            "meeting_lastmodifieddate": record.prop("hs_lastmodifieddate"),
            "contacts_emails": emails,
        }

        return Event(
            kind=kind,
            occurred_at=occurred_at - SECONDARY_EVENT_OFFSET,
            identity=record.id,
            properties=filter_properties(properties),
        )
