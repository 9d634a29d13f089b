"""Caller-side retry of store contention.

Ledger operations never retry themselves. Callers that hit a
StoreConflictError wrap the whole operation (load, distribute, write) with
``call_with_store_retry`` so each attempt re-reads fresh documents.
"""

import logging
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from unitledger.config import Settings
from unitledger.errors import StoreConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning("Store conflict on attempt %d, retrying: %s", retry_state.attempt_number, exc)


def store_retrying(settings: Settings) -> Retrying:
    """Build the tenacity retry controller for store conflicts."""
    return Retrying(
        retry=retry_if_exception_type(StoreConflictError),
        stop=stop_after_attempt(settings.store_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.store_retry_wait_seconds,
            max=settings.store_retry_max_wait_seconds,
        ),
        before_sleep=_log_retry,
        reraise=True,
    )


def call_with_store_retry(fn: Callable[[], T], settings: Settings) -> T:
    """Call ``fn`` retrying StoreConflictError with exponential backoff.

    Any other exception propagates immediately. After the last attempt the
    StoreConflictError itself is re-raised.
    """
    return store_retrying(settings)(fn)


__all__ = ["store_retrying", "call_with_store_retry"]
