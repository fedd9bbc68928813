"""
Bounded retry with exponential backoff.

Thin wrapper over tenacity so callers get a plain function call with an
injectable sleep (tests pass a recorder instead of time.sleep).
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from feed_orchestrator.config import ORACLE_MAX_ATTEMPTS
from feed_orchestrator.errors import OracleError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Attempt %d failed (%s), retrying in %.1fs",
        retry_state.attempt_number,
        exc,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
    )


def retry_call(
    fn: Callable[[], T],
    max_attempts: int = ORACLE_MAX_ATTEMPTS,
    base_delay: float = 2.0,
    max_delay: float = 60.0,
    retry_on: Tuple[Type[BaseException], ...] = (OracleError,),
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """
    Call fn until it succeeds or max_attempts is reached.

    Waits base_delay * 2^(n-1) seconds after the n-th failure, so the
    defaults give 2s then 4s. The last exception is re-raised once attempts
    are exhausted; exceptions outside retry_on propagate immediately.
    """
    retryer = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_delay, max=max_delay),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        sleep=sleep or time.sleep,
        reraise=True,
    )
    return retryer(fn)


__all__ = ["retry_call"]
