"""
Bounded retry with exponential backoff around a single remote call.

One executor serves every resource type: the operation is a zero-argument
callable and the account tells it whose token to refresh between attempts.
"""

import time
from typing import Callable, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
)

from hubspot_sync.client import AuthExpiredError, is_retryable_error
from hubspot_sync.models import Account
from hubspot_sync.tokens import TokenManager

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetriesExhausted(Exception):
    """Raised when every attempt of an operation failed."""

    def __init__(self, operation: str, attempts: int, last_error: BaseException | None):
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}"
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class BackoffExecutor:
    """
    Runs an operation with up to `max_retries` retries.

    The delay before retry i (1-based) is `base_delay * 2**i`. Before each
    retry the account's token is refreshed if it expired or the failure was
    a 401; a failed refresh propagates immediately as AuthRefreshError.
    Errors that are neither transient nor auth-related propagate unchanged
    on the first attempt.

    Example:
        executor = BackoffExecutor(tokens)
        page = executor.execute(
            lambda: client.search(account.credential, "contacts", request),
            account=account,
            operation_name="search_contacts",
        )
    """

    def __init__(
        self,
        token_manager: TokenManager,
        max_retries: int = 4,
        base_delay: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.token_manager = token_manager
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

        self.retry_count = 0
        self.exhausted_count = 0

    def _delay(self, retry_state: RetryCallState) -> float:
        return self.base_delay * 2 ** retry_state.attempt_number

    def _before_retry(self, retry_state: RetryCallState, account: Account, log) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        self.retry_count += 1

        log.warning(
            "Retrying after error",
            attempt=retry_state.attempt_number,
            max_retries=self.max_retries,
            delay_seconds=delay,
            error=str(error),
        )

        if isinstance(error, AuthExpiredError):
            self.token_manager.refresh(account, stale_token=error.stale_token)
        elif self.token_manager.is_expired(account.credential.expires_at):
            self.token_manager.ensure_fresh(account)

    def execute(
        self,
        operation: Callable[[], T],
        *,
        account: Account,
        operation_name: str,
    ) -> T:
        """
        Run `operation`, retrying transient and auth failures.

        Raises:
            RetriesExhausted: All attempts failed with retryable errors
            AuthRefreshError: A token refresh between attempts failed
        """
        log = logger.bind(operation=operation_name, hub_id=account.hub_id)

        retrying = Retrying(
            retry=retry_if_exception(is_retryable_error),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._delay,
            sleep=self._sleep,
            before_sleep=lambda retry_state: self._before_retry(retry_state, account, log),
            reraise=False,
        )

        try:
            return retrying(operation)
        except RetryError as e:
            self.exhausted_count += 1
            last_error = e.last_attempt.exception()
            log.error(
                "Retries exhausted",
                attempts=e.last_attempt.attempt_number,
                error=str(last_error),
            )
            raise RetriesExhausted(
                operation_name, e.last_attempt.attempt_number, last_error
            ) from last_error

    def get_stats(self) -> dict[str, int]:
        return {
            "retries": self.retry_count,
            "exhausted": self.exhausted_count,
        }
