"""
HubSpot Incremental Sync

Pulls contacts, companies and meetings changed since the last run from
every HubSpot account of a tenant and emits them as sync events.

Features:
- Per-account, per-resource watermarks advanced only on complete passes
- Search pagination past the 10k offset limit via window narrowing
- Bounded retry with exponential backoff and token refresh
- Single-flight OAuth token refresh per account
- Background event flushes joined at the end of each run

Quick Start:
    pip install hubspot-incremental-sync
    export HUBSPOT_CID=... HUBSPOT_CS=...
    hs-sync test     # Verify every account's credentials
    hs-sync sync     # Run an incremental sync
"""

from hubspot_sync.associations import AssociationResolver
from hubspot_sync.backoff import BackoffExecutor, RetriesExhausted
from hubspot_sync.batcher import EventBatcher
from hubspot_sync.client import (
    AuthExpiredError,
    HubSpotAPIError,
    HubSpotClient,
    HubSpotNotFoundError,
    HubSpotRateLimitError,
    HubSpotServerError,
    TransientRemoteError,
)
from hubspot_sync.events import EventBuilder, filter_properties
from hubspot_sync.models import (
    Account,
    Credential,
    CrmRecord,
    Domain,
    Event,
    EventKind,
    ResourceType,
)
from hubspot_sync.pager import PaginationStalledError, SyncWindow, WindowedPager
from hubspot_sync.store import (
    JsonLinesEventSink,
    JsonTenantStore,
    PersistenceError,
)
from hubspot_sync.sync import NoAccountsError, SyncOrchestrator, SyncRunReport
from hubspot_sync.tokens import AuthRefreshError, TokenManager

__version__ = "1.0.0"
__all__ = [
    # Orchestration
    "SyncOrchestrator",
    "SyncRunReport",
    "NoAccountsError",

    # Engine components
    "BackoffExecutor",
    "RetriesExhausted",
    "TokenManager",
    "AuthRefreshError",
    "WindowedPager",
    "SyncWindow",
    "PaginationStalledError",
    "AssociationResolver",
    "EventBatcher",
    "EventBuilder",
    "filter_properties",

    # API client
    "HubSpotClient",
    "HubSpotAPIError",
    "TransientRemoteError",
    "HubSpotRateLimitError",
    "HubSpotServerError",
    "HubSpotNotFoundError",
    "AuthExpiredError",

    # Models
    "Account",
    "Credential",
    "CrmRecord",
    "Domain",
    "Event",
    "EventKind",
    "ResourceType",

    # Persistence
    "JsonTenantStore",
    "JsonLinesEventSink",
    "PersistenceError",
]
