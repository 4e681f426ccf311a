"""
Access token lifecycle.

Tokens live on each Account's Credential. Refreshes are single-flight per
account: callers that queue up behind an in-progress refresh reuse its
result instead of issuing their own, so racing refreshes can't invalidate
each other's tokens.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

from hubspot_sync.client import HubSpotAPIError, HubSpotClient
from hubspot_sync.models import Account

logger = structlog.get_logger(__name__)

_UNSET = object()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthRefreshError(Exception):
    """Raised when a refresh token can't be exchanged for an access token."""

    def __init__(self, hub_id: str, cause: BaseException):
        super().__init__(f"Token refresh failed for hub {hub_id}: {cause}")
        self.hub_id = hub_id
        self.cause = cause


class TokenManager:
    """
    Holds OAuth app credentials and refreshes account tokens on demand.

    Example:
        tokens = TokenManager(client, client_id="...", client_secret="...")
        token = tokens.current_token(account)  # refreshes if expired
    """

    def __init__(
        self,
        client: HubSpotClient,
        client_id: str,
        client_secret: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.client_id = client_id
        self.client_secret = client_secret
        self._clock = clock

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self.refresh_count = 0

    def _lock_for(self, hub_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(hub_id, threading.Lock())

    def is_expired(self, instant: datetime | None) -> bool:
        """True when the expiry instant is unknown or already passed."""
        if instant is None:
            return True
        return self._clock() >= instant

    def current_token(self, account: Account) -> str:
        return self.ensure_fresh(account)

    def ensure_fresh(self, account: Account) -> str:
        """Return a usable token, refreshing only if the held one expired."""
        credential = account.credential
        observed = credential.access_token
        if observed and not self.is_expired(credential.expires_at):
            return observed
        return self.refresh(account, stale_token=observed)

    def refresh(self, account: Account, stale_token: object = _UNSET) -> str:
        """
        Exchange the account's refresh token for a new access token.

        Args:
            account: Account whose credential is replaced
            stale_token: Token the caller saw fail or expire. If another
                caller already replaced it with an unexpired token while
                this one waited, that token is returned without a new call.

        Raises:
            AuthRefreshError: If the exchange fails
        """
        with self._lock_for(account.hub_id):
            credential = account.credential
            if (
                stale_token is not _UNSET
                and credential.access_token
                and credential.access_token != stale_token
                and not self.is_expired(credential.expires_at)
            ):
                return credential.access_token

            log = logger.bind(hub_id=account.hub_id)
            log.info("Refreshing access token")

            try:
                grant = self.client.refresh_access_token(
                    self.client_id, self.client_secret, account.refresh_token
                )
            except HubSpotAPIError as e:
                log.error("Token refresh failed", error=str(e))
                raise AuthRefreshError(account.hub_id, e) from e

            self.refresh_count += 1
            credential.access_token = grant.access_token
            credential.expires_at = self._clock() + timedelta(seconds=grant.expires_in)
            if grant.refresh_token:
                account.refresh_token = grant.refresh_token

            log.debug("Access token refreshed", expires_at=credential.expires_at.isoformat())
            return grant.access_token
