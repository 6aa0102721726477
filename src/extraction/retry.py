"""Bounded exponential-backoff retry for single network operations."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

import anthropic
import httpx
import openai
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnRetry = Callable[[BaseException, int, int], None]


class TransientError(Exception):
    """Raised by an operation to request a retry explicitly."""


_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TransientError,
    ConnectionError,
    TimeoutError,
    httpx.TransportError,
    openai.APIConnectionError,  # includes APITimeoutError
    anthropic.APIConnectionError,
)


def is_transient(error: BaseException) -> bool:
    """Return True for failures worth retrying.

    Network, timeout, rate-limit (429) and server-side (5xx) errors are
    transient. Client errors (other 4xx, bad credentials) and anything else
    are terminal.
    """
    if isinstance(error, _TRANSIENT_TYPES):
        return True
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status == 429 or status >= 500
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry parameters for one backend call."""

    max_retries: int = 2
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay_ms <= 0:
            raise ValueError("initial_delay_ms must be > 0")
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be >= initial_delay_ms")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")


def retry_with_backoff(
    operation: Callable[[], T],
    policy: RetryPolicy,
    on_retry: OnRetry | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` and retry transient failures with exponential backoff.

    The delay before retry *n* is ``initial_delay_ms * backoff_multiplier**(n-1)``,
    capped at ``max_delay_ms``. ``on_retry(error, attempt_number, delay_ms)`` is
    invoked before each wait.

    Args:
        operation: Zero-argument callable performing one network operation.
        policy: Retry limits and delays.
        on_retry: Optional observer called before every retry.
        sleep: Wait function (seconds); real ``time.sleep`` by default.

    Returns:
        The first successful result of ``operation``.

    Raises:
        The last error once retries are exhausted, or a terminal error at once.
    """

    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay_ms = round(retry_state.next_action.sleep * 1000) if retry_state.next_action else 0
        logger.debug(
            "Attempt %d/%d failed: %s. Retrying in %dms",
            retry_state.attempt_number,
            policy.max_retries + 1,
            error,
            delay_ms,
        )
        if on_retry is not None and error is not None:
            on_retry(error, retry_state.attempt_number, delay_ms)

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=wait_exponential(
            multiplier=policy.initial_delay_ms / 1000,
            exp_base=policy.backoff_multiplier,
            max=policy.max_delay_ms / 1000,
        ),
        retry=retry_if_exception(is_transient),
        before_sleep=_before_sleep,
        sleep=sleep,
        reraise=True,
    )
    return retrying(operation)
