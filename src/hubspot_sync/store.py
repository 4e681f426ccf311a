"""
Tenant store and event sink.

The sync engine only depends on the two protocols below. The JSON
implementations keep the domain (accounts, tokens, watermarks) in one file
written atomically, and append events as JSON lines.
"""

import json
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import structlog
from pydantic import ValidationError

from hubspot_sync.models import Account, Domain, Event

logger = structlog.get_logger(__name__)

DEFAULT_STATE_DIR = Path.home() / ".hubspot-sync"


class PersistenceError(Exception):
    """Raised when the tenant store or event sink can't write."""
    pass


class TenantStore(Protocol):
    def load_domain(self) -> Domain: ...

    def save_account(self, domain: Domain, account: Account) -> None: ...


class EventSink(Protocol):
    def persist(self, events: Sequence[Event]) -> int: ...


class JsonTenantStore:
    """
    Domain persistence in a single JSON file.

    Saves write the whole domain to a temp file and rename it over the
    original, so a crash mid-write never leaves a truncated file behind.

    Usage:
        store = JsonTenantStore("/path/to/tenant.json")
        domain = store.load_domain()

        account.last_pulled_dates[ResourceType.CONTACTS] = now
        store.save_account(domain, account)
    """

    def __init__(self, path: str | Path | None = None):
        if path is None:
            path = DEFAULT_STATE_DIR / "tenant.json"

        self.path = Path(path)
        self._lock = threading.Lock()
        self._log = logger.bind(tenant_file=str(self.path))

    def load_domain(self) -> Domain:
        """
        Load the domain, or an empty one if the file doesn't exist.

        Raises:
            PersistenceError: If the file exists but can't be read or parsed
        """
        if not self.path.exists():
            self._log.warning("No tenant file, using empty domain")
            return Domain()

        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            domain = Domain.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            raise PersistenceError(f"Failed to load tenant file {self.path}: {e}") from e

        self._log.info("Loaded domain", accounts=len(domain.accounts))
        return domain

    def save_account(self, domain: Domain, account: Account) -> None:
        """
        Persist the account (the domain is written as a whole).

        Raises:
            PersistenceError: If the write fails
        """
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                temp_file = self.path.with_suffix(".tmp")
                with open(temp_file, "w") as f:
                    f.write(domain.model_dump_json(indent=2))
                temp_file.replace(self.path)
            except OSError as e:
                self._log.error("Failed to save domain", hub_id=account.hub_id, error=str(e))
                raise PersistenceError(f"Failed to save account {account.hub_id}: {e}") from e

        self._log.debug("Saved account", hub_id=account.hub_id)


class JsonLinesEventSink:
    """Appends events to a JSON lines file; safe to call from flush threads."""

    def __init__(self, path: str | Path | None = None):
        if path is None:
            path = DEFAULT_STATE_DIR / "events.jsonl"

        self.path = Path(path)
        self._lock = threading.Lock()

    def persist(self, events: Sequence[Event]) -> int:
        if not events:
            return 0

        lines = "".join(event.model_dump_json() + "\n" for event in events)
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a") as f:
                    f.write(lines)
            except OSError as e:
                raise PersistenceError(f"Failed to write events to {self.path}: {e}") from e

        logger.info("Events saved", count=len(events), events_file=str(self.path))
        return len(events)
