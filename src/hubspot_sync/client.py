"""
HubSpot API Client

Synchronous HTTP client for the handful of CRM endpoints the sync engine
needs:
- CRM search (cursor pagination)
- Batch and per-object association reads
- Single object reads
- OAuth refresh token exchange

Each method performs exactly one attempt (apart from association paging);
retries and token refresh are the BackoffExecutor's job. Errors are mapped
onto a small taxonomy so callers can tell retry-worthy failures from ones
that need a new token and from ones that are fatal.
"""

import time
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from hubspot_sync.models import (
    AssociationBatchItem,
    AssociationBatchResponse,
    AssociationListResponse,
    CrmRecord,
    Credential,
    SearchPage,
    SearchRequest,
    TokenGrant,
)
from hubspot_sync.rate_limiter import TokenBucketRateLimiter

logger = structlog.get_logger(__name__)

HUBSPOT_API_URL = "https://api.hubapi.com"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class HubSpotAPIError(Exception):
    """Base exception for HubSpot API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code:
            return f"{base} (HTTP {self.status_code})"
        return base


class TransientRemoteError(HubSpotAPIError):
    """Network failure or throttling; safe to retry."""
    pass


class HubSpotRateLimitError(TransientRemoteError):
    """Raised when API rate limit is exceeded (429)."""
    pass


class HubSpotServerError(TransientRemoteError):
    """Raised on server errors (5xx)."""
    pass


class AuthExpiredError(HubSpotAPIError):
    """Raised on 401; the access token must be refreshed before retrying."""

    def __init__(self, message: str, stale_token: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.stale_token = stale_token


class HubSpotNotFoundError(HubSpotAPIError):
    """Raised when resource not found (404)."""
    pass


def is_retryable_error(exception: BaseException) -> bool:
    """Errors the BackoffExecutor retries: transient ones and expired tokens."""
    return isinstance(exception, (TransientRemoteError, AuthExpiredError))


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_response(model: type[ModelT], data: dict[str, Any]) -> ModelT:
    """Validate a response body; a malformed body is a fatal API error."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise HubSpotAPIError(f"Invalid {model.__name__} response: {e}") from e


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class HubSpotClient:
    """
    HubSpot CRM API client.

    Credentials are not held by the client: every call takes the
    account-scoped Credential it should authenticate with, so one client
    can serve several portals without tokens bleeding between them.

    Example:
        with HubSpotClient() as client:
            page = client.search(account.credential, "contacts", request)
    """

    def __init__(
        self,
        base_url: str = HUBSPOT_API_URL,
        timeout: float = 30.0,
        requests_per_interval: int = 100,
        interval_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        rate_limiter: TokenBucketRateLimiter | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter(
            requests_per_interval=requests_per_interval,
            interval_seconds=interval_seconds,
        )
        self._transport = transport
        self._client: httpx.Client | None = None

        self._request_count = 0
        self._error_count = 0

        self._log = logger.bind(base_url=self.base_url)

    def _build_client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            headers={"User-Agent": "hubspot-incremental-sync/1.0"},
            transport=self._transport,
        )

    def __enter__(self) -> "HubSpotClient":
        self._client = self._build_client()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    @property
    def client(self) -> httpx.Client:
        """Get HTTP client, creating if needed."""
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def _request(
        self,
        method: str,
        path: str,
        credential: Credential | None = None,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make one rate-limited request and map failures onto the error taxonomy.
        """
        log = self._log.bind(path=path, method=method)

        self.rate_limiter.acquire()

        headers = {}
        token = credential.access_token if credential else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._request_count += 1
        request_id = self._request_count
        log.debug("API request", request_id=request_id)

        start_time = time.monotonic()
        try:
            response = self.client.request(
                method, path, params=params, json=json, data=data, headers=headers
            )
        except httpx.TransportError as e:
            self._error_count += 1
            raise TransientRemoteError(f"Transport error: {e}") from e
        elapsed = time.monotonic() - start_time

        log.debug(
            "API response",
            request_id=request_id,
            status_code=response.status_code,
            elapsed_ms=round(elapsed * 1000),
        )

        if response.status_code >= 400:
            self._error_count += 1

        if response.status_code == 429:
            raise HubSpotRateLimitError(
                "Rate limit exceeded",
                status_code=429,
                response_body=response.text[:500],
            )

        if response.status_code == 401:
            raise AuthExpiredError(
                "Access token rejected",
                stale_token=token,
                status_code=401,
                response_body=response.text[:500],
            )

        if response.status_code == 404:
            raise HubSpotNotFoundError(f"Resource not found: {path}", status_code=404)

        if response.status_code >= 500:
            raise HubSpotServerError(
                f"Server error {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:500],
            )

        if response.status_code >= 400:
            raise HubSpotAPIError(
                f"API error: {response.text[:200]}",
                status_code=response.status_code,
                response_body=response.text[:500],
            )

        if not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise HubSpotAPIError(f"Invalid JSON response: {e}", status_code=response.status_code)

    # -------------------------------------------------------------------------
    # CRM objects
    # -------------------------------------------------------------------------

    def search(
        self,
        credential: Credential,
        object_type: str,
        request: SearchRequest,
    ) -> SearchPage:
        """Run one page of a CRM search."""
        data = self._request(
            "POST",
            f"/crm/v3/objects/{object_type}/search",
            credential,
            json=request.to_body(),
        )
        return parse_response(SearchPage, data)

    def get_object(
        self,
        credential: Credential,
        object_type: str,
        object_id: str,
        properties: list[str] | None = None,
    ) -> CrmRecord:
        """Get a single CRM object by id."""
        params = {"properties": ",".join(properties)} if properties else None
        data = self._request(
            "GET", f"/crm/v3/objects/{object_type}/{object_id}", credential, params=params
        )
        return parse_response(CrmRecord, data)

    # -------------------------------------------------------------------------
    # Associations
    # -------------------------------------------------------------------------

    def batch_read_associations(
        self,
        credential: Credential,
        from_type: str,
        to_type: str,
        object_ids: list[str],
    ) -> list[AssociationBatchItem]:
        """Read associations for many objects in one call."""
        if not object_ids:
            return []

        data = self._request(
            "POST",
            f"/crm/v3/associations/{from_type}/{to_type}/batch/read",
            credential,
            json={"inputs": [{"id": object_id} for object_id in object_ids]},
        )
        return parse_response(AssociationBatchResponse, data).results

    def get_associations(
        self,
        credential: Credential,
        object_type: str,
        object_id: str,
        to_type: str,
        page_size: int = 500,
    ) -> list[str]:
        """List every associated object id, following pagination."""
        ids: list[str] = []
        after: str | None = None

        while True:
            params: dict[str, Any] = {"limit": page_size}
            if after:
                params["after"] = after

            data = self._request(
                "GET",
                f"/crm/v4/objects/{object_type}/{object_id}/associations/{to_type}",
                credential,
                params=params,
            )
            response = parse_response(AssociationListResponse, data)
            ids.extend(target.to_object_id for target in response.results)

            if not (response.paging and response.paging.next and response.paging.next.after):
                return ids
            after = response.paging.next.after

    # -------------------------------------------------------------------------
    # OAuth
    # -------------------------------------------------------------------------

    def refresh_access_token(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
    ) -> TokenGrant:
        """Exchange a refresh token for a new access token."""
        data = self._request(
            "POST",
            "/oauth/v1/token",
            data={
                "grant_type": "refresh_token",
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
            },
        )
        return parse_response(TokenGrant, data)

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Get client statistics for monitoring."""
        return {
            "request_count": self._request_count,
            "error_count": self._error_count,
            "error_rate": round(self._error_count / max(1, self._request_count), 4),
            "rate_limiter": self.rate_limiter.get_stats(),
        }

    def health_check(self, credential: Credential) -> dict[str, Any]:
        """Verify the credential can read the CRM."""
        try:
            self._request("GET", "/crm/v3/objects/contacts", credential, params={"limit": 1})
            return {"status": "healthy"}
        except AuthExpiredError:
            return {"status": "auth_error", "message": "Access token rejected"}
        except HubSpotAPIError as e:
            return {"status": "error", "message": str(e)}
