"""
Exponential backoff for transient Azure and AzCopy failures.

Blob property reads, ARM calls and AzCopy transfers all fail now and then
with throttling (429), gateway errors or dropped connections. Callers wrap
those operations with :func:`retry_with_backoff` and pass
:func:`is_retryable_error` so that authorization and validation errors
surface immediately.
"""

import logging
import time
from collections.abc import Callable, Iterator
from functools import wraps
from typing import TypeVar

from azops.exceptions import RetryableError

T = TypeVar("T")

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# azure-core transport failures, matched by name so azure-core stays optional here
TRANSPORT_ERROR_NAMES = frozenset({"ServiceRequestError", "ServiceResponseError"})

TRANSIENT_MARKERS = (
    "connection",
    "timeout",
    "timed out",
    "network",
    "unreachable",
    "throttl",
    "server busy",
    "server error",
    "429",
    "500",
    "502",
    "503",
    "504",
)


def backoff_delays(
    initial_delay: float, backoff_factor: float, max_delay: float
) -> Iterator[float]:
    """Yield ``initial_delay``, then grow by ``backoff_factor``, never above ``max_delay``."""
    delay = initial_delay
    while True:
        yield min(delay, max_delay)
        delay *= backoff_factor


def retry_with_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 60.0,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    should_retry: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[Exception, int, int], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Retry the decorated function with exponential backoff.

    Args:
        max_attempts: Total number of calls before giving up
        initial_delay: Seconds to wait after the first failure
        backoff_factor: Delay multiplier applied after each failure
        max_delay: Upper bound for a single wait
        retryable_exceptions: Exception types that are caught at all
        should_retry: Predicate; errors it rejects propagate unchanged
        on_retry: Called as ``(error, attempt, max_attempts)`` instead of logging
        sleep: Wait function

    Raises:
        RetryableError: When every attempt failed; wraps the last error

    Example:
        @retry_with_backoff(**RetryStrategy.apply("ARM_API"), should_retry=is_retryable_error)
        def list_routes(client, rg, table):
            return list(client.routes.list(rg, table))
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delays = backoff_delays(initial_delay, backoff_factor, max_delay)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    if should_retry is not None and not should_retry(e):
                        raise
                    if attempt >= max_attempts:
                        raise RetryableError(e, attempt, max_attempts) from e

                    wait = next(delays)
                    if on_retry is not None:
                        on_retry(e, attempt, max_attempts)
                    else:
                        logger.warning(
                            f"{func.__name__} failed ({attempt}/{max_attempts}): {e}; "
                            f"retrying in {wait:.1f}s"
                        )
                    sleep(wait)

        return wrapper

    return decorator


def is_retryable_error(error: Exception) -> bool:
    """
    Decide whether ``error`` is transient.

    An HTTP status on the error (Azure SDK ``HttpResponseError``) decides on
    its own. Otherwise azure-core transport errors, builtin connection and
    timeout errors, and messages that mention throttling, timeouts or 5xx
    responses (as AzCopy prints them) count as transient.
    """
    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        return status_code in RETRYABLE_STATUS_CODES

    if type(error).__name__ in TRANSPORT_ERROR_NAMES:
        return True
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True

    text = str(getattr(error, "message", error)).lower()
    return any(marker in text for marker in TRANSIENT_MARKERS)


class RetryStrategy:
    """Named retry presets."""

    # Cheap metadata reads (blob properties)
    MODERATE = {
        "max_attempts": 3,
        "initial_delay": 1.0,
        "backoff_factor": 2.0,
        "max_delay": 30.0,
    }

    # Whole-file AzCopy transfers
    TRANSFER = {
        "max_attempts": 3,
        "initial_delay": 10.0,
        "backoff_factor": 3.0,
        "max_delay": 120.0,
    }

    # Resource Manager calls, which throttle per subscription
    ARM_API = {
        "max_attempts": 4,
        "initial_delay": 2.0,
        "backoff_factor": 2.0,
        "max_delay": 60.0,
    }

    @staticmethod
    def apply(strategy_name: str = "MODERATE") -> dict:
        """Return a copy of the named preset (MODERATE when unknown)."""
        preset = getattr(RetryStrategy, strategy_name.upper(), None)
        if not isinstance(preset, dict):
            preset = RetryStrategy.MODERATE
        return dict(preset)
