"""
Windowed cursor pagination over the CRM search API.

The search API refuses cursors past 10,000 results. Pages are sorted by
last-modified time ascending, so once the cursor offset reaches the
ceiling the pager drops the cursor and restarts inside a narrower window
beginning at the last record's modification time:

    CURSOR_PAGING --(offset >= ceiling)--> WINDOW_NARROWING
    WINDOW_NARROWING --(next page)--> CURSOR_PAGING
    any --(no next cursor)--> EXHAUSTED
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import structlog

from hubspot_sync.backoff import BackoffExecutor
from hubspot_sync.client import HubSpotClient
from hubspot_sync.models import (
    Account,
    CrmRecord,
    FilterCondition,
    FilterGroup,
    SearchPage,
    SearchRequest,
    SortOrder,
)
from hubspot_sync.resources import ResourceSpec

logger = structlog.get_logger(__name__)

OFFSET_CEILING = 9900
DEFAULT_PAGE_SIZE = 100


class PaginationStalledError(Exception):
    """Raised when narrowing the window can't move its start forward."""
    pass


class PagerPhase(str, Enum):
    CURSOR_PAGING = "cursor_paging"
    WINDOW_NARROWING = "window_narrowing"
    EXHAUSTED = "exhausted"


def to_epoch_millis(value: datetime) -> str:
    return str(int(value.timestamp() * 1000))


def build_modified_filter(
    start: datetime | None,
    end: datetime,
    property_name: str,
) -> FilterGroup:
    """Filter group for `start <= property <= end` (no lower bound if start is None)."""
    filters = []
    if start is not None:
        filters.append(
            FilterCondition(property_name=property_name, operator="GTE", value=to_epoch_millis(start))
        )
    filters.append(
        FilterCondition(property_name=property_name, operator="LTE", value=to_epoch_millis(end))
    )
    return FilterGroup(filters=filters)


@dataclass
class SyncWindow:
    """Pagination state for one pass over one resource."""

    upper_bound: datetime
    lower_bound: datetime | None = None
    cursor: str | None = None
    fallback_modified_date: datetime | None = None
    phase: PagerPhase = PagerPhase.CURSOR_PAGING
    offset_ceiling: int = OFFSET_CEILING
    narrowings: int = field(default=0)

    @property
    def window_start(self) -> datetime | None:
        return self.fallback_modified_date or self.lower_bound

    def advance(self, page: SearchPage) -> PagerPhase:
        """Apply one fetched page and return the resulting phase."""
        next_offset = page.next_offset

        if next_offset is None:
            self.phase = PagerPhase.EXHAUSTED
            return self.phase

        if next_offset < self.offset_ceiling:
            self.cursor = page.next_cursor
            self.phase = PagerPhase.CURSOR_PAGING
            return self.phase

        last_modified = page.results[-1].updated_at if page.results else None
        if last_modified is None:
            raise PaginationStalledError("Page at offset ceiling has no modification time to narrow from")

        current_start = self.window_start
        if current_start is not None and last_modified <= current_start:
            raise PaginationStalledError(
                f"More than {self.offset_ceiling} records modified at {last_modified.isoformat()}"
            )

        self.cursor = None
        self.fallback_modified_date = last_modified
        self.narrowings += 1
        self.phase = PagerPhase.WINDOW_NARROWING
        return self.phase


@dataclass
class RecordPage:
    """One page of records yielded by the pager."""

    records: list[CrmRecord]
    page_number: int
    window_start: datetime | None
    cursor: str | None


class WindowedPager:
    """
    Drives search pagination for one resource type per call.

    Example:
        pager = WindowedPager(client, executor)
        for page in pager.paginate(CONTACTS, account, since=last_pulled, until=now):
            handle(page.records)
    """

    def __init__(
        self,
        client: HubSpotClient,
        executor: BackoffExecutor,
        page_size: int = DEFAULT_PAGE_SIZE,
        offset_ceiling: int = OFFSET_CEILING,
    ):
        self.client = client
        self.executor = executor
        self.page_size = page_size
        self.offset_ceiling = offset_ceiling

    def build_request(self, resource: ResourceSpec, window: SyncWindow) -> SearchRequest:
        return SearchRequest(
            filter_groups=[
                build_modified_filter(window.window_start, window.upper_bound, resource.modified_property)
            ],
            sorts=[SortOrder(property_name=resource.modified_property, direction="ASCENDING")],
            properties=list(resource.properties),
            limit=self.page_size,
            after=window.cursor,
        )

    def paginate(
        self,
        resource: ResourceSpec,
        account: Account,
        since: datetime | None,
        until: datetime,
    ) -> Iterator[RecordPage]:
        """
        Yield every page of records modified in [since, until].

        Raises:
            RetriesExhausted: A page fetch failed on every attempt
            PaginationStalledError: The window can't be narrowed further
        """
        window = SyncWindow(upper_bound=until, lower_bound=since, offset_ceiling=self.offset_ceiling)
        log = logger.bind(resource=resource.name, hub_id=account.hub_id)
        page_number = 0

        while window.phase is not PagerPhase.EXHAUSTED:
            request = self.build_request(resource, window)
            page = self.executor.execute(
                lambda: self.client.search(account.credential, resource.object_type, request),
                account=account,
                operation_name=f"search_{resource.name}",
            )
            page_number += 1

            records = self._within_window(page.results, since, log)
            log.info(
                "Fetched page",
                page=page_number,
                count=len(records),
                cursor=window.cursor,
                window_start=window.window_start.isoformat() if window.window_start else None,
            )

            yield RecordPage(
                records=records,
                page_number=page_number,
                window_start=window.window_start,
                cursor=window.cursor,
            )

            if window.advance(page) is PagerPhase.WINDOW_NARROWING:
                log.info(
                    "Offset ceiling reached, narrowing window",
                    window_start=window.window_start.isoformat(),
                    narrowings=window.narrowings,
                )

    @staticmethod
    def _within_window(records: list[CrmRecord], since: datetime | None, log) -> list[CrmRecord]:
        if since is None:
            return records

        kept = []
        for record in records:
            if record.updated_at is not None and record.updated_at < since:
                log.warning(
                    "Ignoring record modified before window",
                    record_id=record.id,
                    updated_at=record.updated_at.isoformat(),
                )
                continue
            kept.append(record)
        return kept
