"""
Retry helpers for adapter transports.

A reconciliation run never retries as a whole. Adapters wrap their own
network calls with retry_call so a timeout, a 429 or a 5xx response does
not fail a listing or an apply operation outright.
"""

import time
import logging
from typing import Callable, Any, Dict, Tuple, Type, Optional

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

TRANSIENT_MESSAGES = (
    'timeout', 'timed out', 'connection reset', 'connection refused',
    'temporary failure', 'service unavailable', 'too many requests',
)


class RetryableError(Exception):
    """A transport failure that may succeed on another attempt."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MaxRetriesExceeded(Exception):
    """Every attempt of a retried call failed; carries the last failure."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict = None,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (RetryableError,),
    on_retry: Optional[Callable[[int, Exception], None]] = None
) -> Any:
    """
    Call ``func(*args, **kwargs)`` until it returns or attempts run out.

    Only ``exceptions`` are retried, anything else propagates at once.
    The wait starts at ``delay`` seconds and is multiplied by ``backoff``
    after every failed attempt. ``on_retry(attempt, error)`` runs before
    each wait.

    Raises:
        MaxRetriesExceeded: when the final attempt also failed
    """
    kwargs = kwargs or {}
    attempts = max(1, max_attempts)
    wait = delay

    for attempt in range(1, attempts + 1):
        try:
            result = func(*args, **kwargs)
        except exceptions as e:
            if attempt == attempts:
                raise MaxRetriesExceeded(attempts, e) from e

            logger.debug(f"Attempt {attempt}/{attempts} raised {type(e).__name__}: {e}; "
                         f"next try in {wait:.1f}s")
            if on_retry:
                try:
                    on_retry(attempt, e)
                except Exception as callback_error:
                    logger.warning(f"Retry callback failed: {callback_error}")

            time.sleep(wait)
            wait *= backoff
        else:
            if attempt > 1:
                logger.info(f"Call succeeded on attempt {attempt}")
            return result


def retry_settings_from_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Map an ``error_handling`` block onto retry_call keyword arguments."""
    config = config or {}
    return {
        'max_attempts': int(config.get('max_retries', 3)) + 1,
        'delay': float(config.get('retry_wait_seconds', 1.0)),
        'backoff': float(config.get('retry_backoff', 1.0)),
    }


def is_retryable_error(exception: Exception) -> bool:
    """True when ``exception`` looks transient: a connection or timeout
    error, a retryable HTTP status, or a message naming one of those."""
    if isinstance(exception, (ConnectionError, TimeoutError, RetryableError)):
        return True

    if getattr(exception, 'status_code', None) in RETRYABLE_STATUS_CODES:
        return True

    message = str(exception).lower()
    return any(fragment in message for fragment in TRANSIENT_MESSAGES)


def create_retry_callback(operation_name: str) -> Callable[[int, Exception], None]:
    """Build an on_retry callback that logs a warning naming the operation."""
    def on_retry(attempt: int, exception: Exception):
        logger.warning(f"{operation_name} failed on attempt {attempt}, "
                       f"retrying due to {type(exception).__name__}: {exception}")

    return on_retry
