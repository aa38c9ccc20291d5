"""
Retry utility with exponential backoff.

Only idempotent operations (reads, station release) go through here;
session creation and payment capture are never blindly retried.
"""
import logging
import random
import time
from typing import Callable, TypeVar, Optional

from sqlalchemy.exc import OperationalError, DisconnectionError

from chargeup.core.errors import Unavailable

logger = logging.getLogger(__name__)

T = TypeVar('T')


def should_retry_error(error: Exception) -> bool:
    """
    Determine if an error should be retried.

    Retries on:
    - Unavailable (already-mapped transient failures)
    - Database connectivity errors

    Does NOT retry on precondition failures or other application errors.
    """
    if isinstance(error, Unavailable):
        return True
    if isinstance(error, (OperationalError, DisconnectionError)):
        return True
    return False


def retry_sync_with_backoff(
    func: Callable[[], T],
    max_attempts: int = 3,
    initial_delay: float = 0.2,
    max_delay: float = 5.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    before_retry: Optional[Callable[[], None]] = None,
) -> T:
    """
    Retry a synchronous function with exponential backoff.

    Args:
        func: Zero-argument callable to retry
        before_retry: Called before each new attempt (e.g. db.rollback)

    Raises:
        Unavailable once all attempts are exhausted on a retryable error.
        Non-retryable errors propagate unchanged on the first attempt.
    """
    last_exception = None

    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except Exception as e:
            last_exception = e

            if not should_retry_error(e):
                raise

            if attempt >= max_attempts:
                logger.warning(f"Max attempts ({max_attempts}) reached, giving up")
                break

            delay = min(initial_delay * (exponential_base ** (attempt - 1)), max_delay)
            if jitter:
                delay += delay * 0.1 * random.random()

            logger.info(
                f"Attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {delay:.2f}s"
            )
            time.sleep(delay)
            if before_retry is not None:
                before_retry()

    if isinstance(last_exception, Unavailable):
        raise last_exception
    raise Unavailable() from last_exception
