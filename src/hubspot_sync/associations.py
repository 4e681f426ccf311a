"""
Association resolution between fetched records and related objects.

Two strategies:
- batch: one batch read per page, first associated id per record
  (contact -> company)
- per-record: list each record's associations and fetch every related
  object individually (meeting -> contacts)

All remote calls go through the BackoffExecutor. A call that still fails
raises out of the resolver, so a record is never mapped with a partial
set of associations. A related object that no longer exists (404) is not
a failure: it is dropped from the record's associations.
"""

from collections.abc import Sequence

import structlog

from hubspot_sync.backoff import BackoffExecutor
from hubspot_sync.cache import BoundedLRUCache
from hubspot_sync.client import HubSpotClient, HubSpotNotFoundError
from hubspot_sync.models import Account, CrmRecord
from hubspot_sync.resources import CONTACT_LOOKUP_PROPERTIES

logger = structlog.get_logger(__name__)


class AssociationResolver:
    """Resolves related object ids (and objects) for a page of records."""

    def __init__(
        self,
        client: HubSpotClient,
        executor: BackoffExecutor,
        cache_size: int = 5000,
    ):
        self.client = client
        self.executor = executor
        self._related_cache: BoundedLRUCache[tuple[str, str, str], CrmRecord] = BoundedLRUCache(
            max_size=cache_size
        )

    def resolve(
        self,
        account: Account,
        records: Sequence[CrmRecord],
        from_type: str,
        to_type: str,
    ) -> dict[str, str]:
        """Map record id -> first associated id; unassociated ids are absent."""
        return self.resolve_batch(account, [record.id for record in records], from_type, to_type)

    def resolve_batch(
        self,
        account: Account,
        object_ids: list[str],
        from_type: str,
        to_type: str,
    ) -> dict[str, str]:
        if not object_ids:
            return {}

        items = self.executor.execute(
            lambda: self.client.batch_read_associations(
                account.credential, from_type, to_type, object_ids
            ),
            account=account,
            operation_name=f"associate_{from_type}_{to_type}",
        )

        mapping: dict[str, str] = {}
        for item in items:
            if item.from_ is None or not item.to:
                continue
            mapping[item.from_.id] = item.to[0].id

        logger.debug(
            "Resolved batch associations",
            hub_id=account.hub_id,
            requested=len(object_ids),
            resolved=len(mapping),
        )
        return mapping

    def resolve_each(
        self,
        account: Account,
        records: Sequence[CrmRecord],
        from_type: str,
        to_type: str,
        properties: Sequence[str] = CONTACT_LOOKUP_PROPERTIES,
    ) -> dict[str, list[CrmRecord]]:
        """
        Map record id -> every associated object, fetched one by one.

        Calls are sequential to stay inside the portal's rate limit.
        """
        resolved: dict[str, list[CrmRecord]] = {}

        for record in records:
            related_ids = self.executor.execute(
                lambda: self.client.get_associations(
                    account.credential, from_type, record.id, to_type
                ),
                account=account,
                operation_name=f"list_{from_type}_{to_type}_associations",
            )
            related = [
                self._get_related(account, to_type, related_id, properties)
                for related_id in related_ids
            ]
            resolved[record.id] = [obj for obj in related if obj is not None]

        return resolved

    def _get_related(
        self,
        account: Account,
        object_type: str,
        object_id: str,
        properties: Sequence[str],
    ) -> CrmRecord | None:
        """Fetch one related object; None if it was deleted since being associated."""
        return self._related_cache.get_or_load(
            (account.hub_id, object_type, object_id),
            lambda: self._load_related(account, object_type, object_id, properties),
        )

    def _load_related(
        self,
        account: Account,
        object_type: str,
        object_id: str,
        properties: Sequence[str],
    ) -> CrmRecord | None:
        try:
            return self.executor.execute(
                lambda: self.client.get_object(
                    account.credential, object_type, object_id, list(properties)
                ),
                account=account,
                operation_name=f"get_{object_type}",
            )
        except HubSpotNotFoundError:
            logger.warning(
                "Associated object not found, skipping",
                hub_id=account.hub_id,
                object_type=object_type,
                object_id=object_id,
            )
            return None

    def get_stats(self) -> dict:
        return {"related_cache": self._related_cache.get_stats()}
