"""Per-resource search settings."""

from dataclasses import dataclass

from hubspot_sync.models import ResourceType


@dataclass(frozen=True)
class ResourceSpec:
    resource: ResourceType
    object_type: str
    modified_property: str
    properties: tuple[str, ...]

    @property
    def name(self) -> str:
        return self.resource.value


CONTACTS = ResourceSpec(
    resource=ResourceType.CONTACTS,
    object_type="contacts",
    # Contacts predate the hs_ prefix on this property
    modified_property="lastmodifieddate",
    properties=(
        "firstname",
        "lastname",
        "jobtitle",
        "email",
        "hubspotscore",
        "hs_lead_status",
        "hs_analytics_source",
        "hs_latest_source",
    ),
)

COMPANIES = ResourceSpec(
    resource=ResourceType.COMPANIES,
    object_type="companies",
    modified_property="hs_lastmodifieddate",
    properties=(
        "name",
        "domain",
        "country",
        "industry",
        "description",
        "annualrevenue",
        "numberofemployees",
        "hs_lead_status",
    ),
)

MEETINGS = ResourceSpec(
    resource=ResourceType.MEETINGS,
    object_type="meetings",
    modified_property="hs_lastmodifieddate",
    properties=(
        "hs_meeting_title",
        "hs_createdate",
        "hs_lastmodifieddate",
    ),
)

RESOURCES: dict[ResourceType, ResourceSpec] = {
    spec.resource: spec for spec in (CONTACTS, COMPANIES, MEETINGS)
}

# Properties read when resolving a meeting's attendees
CONTACT_LOOKUP_PROPERTIES = ("email", "firstname", "lastname")
