"""Bounded exponential backoff for store calls.

The store may be restarting (relaunch after a mode switch, container
start-up), so callers wrap store calls in ``call_with_backoff``. Backoff
grows exponentially from ``initial`` to ``cap`` seconds and gives up after
``timeout`` seconds or ``max_attempts`` attempts, whichever comes first,
raising WaitTimeoutError chained to the last underlying error.

Example:
    >>> from libs.vault_mode.retry import call_with_backoff
    >>> state = call_with_backoff(
    ...     client.health,
    ...     retry_on=(StoreUnreachableError,),
    ...     description="seal status",
    ... )
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    nap,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from libs.vault_mode.exceptions import StoreUnreachableError, WaitTimeoutError

if TYPE_CHECKING:
    from libs.vault_mode.client import StoreClient
    from libs.vault_mode.types import SealState

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_INITIAL_SECONDS = 1.0
DEFAULT_CAP_SECONDS = 10.0
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_MAX_ATTEMPTS = 12


def _sleep(seconds: float) -> None:
    # Looked up at call time so tests can patch tenacity.nap.sleep
    nap.sleep(seconds)


def call_with_backoff(
    fn: Callable[[], T],
    *,
    retry_on: tuple[type[BaseException], ...] = (StoreUnreachableError,),
    initial: float = DEFAULT_INITIAL_SECONDS,
    cap: float = DEFAULT_CAP_SECONDS,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    description: str = "store call",
) -> T:
    """
    Call fn, retrying on the given exception types with bounded backoff.

    Args:
        fn: Zero-argument callable
        retry_on: Exception types that trigger a retry. Anything else
            propagates immediately.
        initial: First backoff interval in seconds
        cap: Maximum backoff interval in seconds
        timeout: Total time budget in seconds
        max_attempts: Maximum number of attempts
        description: Human-readable name for logs and the timeout message

    Returns:
        fn's return value

    Raises:
        WaitTimeoutError: Budget exhausted; chained to the last error
    """
    started = time.monotonic()

    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.info(
            "Retrying %s",
            description,
            extra={
                "attempt": retry_state.attempt_number,
                "error_type": type(exc).__name__ if exc else None,
            },
        )

    retryer = Retrying(
        stop=stop_after_delay(timeout) | stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=initial, min=initial, max=cap),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        sleep=_sleep,
    )

    try:
        return retryer(fn)
    except RetryError as e:
        elapsed = time.monotonic() - started
        last_error = e.last_attempt.exception()
        attempts = e.last_attempt.attempt_number
        logger.warning(
            "Gave up waiting for %s",
            description,
            extra={"attempts": attempts, "elapsed_seconds": round(elapsed, 3)},
        )
        raise WaitTimeoutError(
            f"Timed out waiting for {description} after {attempts} attempt(s) "
            f"({elapsed:.1f}s): {last_error}",
            attempts=attempts,
            elapsed_seconds=elapsed,
        ) from last_error


def wait_until_reachable(
    client: StoreClient,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> SealState:
    """Poll the store's seal status until the listener answers.

    A sealed store counts as reachable: seal-status is served while sealed.
    """
    return call_with_backoff(
        client.health,
        retry_on=(StoreUnreachableError,),
        timeout=timeout,
        description=f"store at {client.url}",
    )
