"""
Caller-side retry for registry lookups.

Lookups never retry internally: a failed attempt comes back as a
retryable verdict and callers (the CLI included) decide whether to try
again. The sources use the classifiers below to set `retryable` on the
RetrievalError they raise.
"""

import functools
import time
from typing import Callable, Optional, Tuple, Type

# Fragments of transport error messages that usually clear up on their own.
TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "connection",
    "temporary failure",
    "service unavailable",
    "500",
    "502",
    "503",
    "504",
    "429",
)

# The registry answers these while overloaded, throttling or restarting.
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class RetryError(Exception):
    """Every attempt failed; the last failure is chained as __cause__."""


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    sleep: Optional[Callable[[float], None]] = None,
):
    """
    Retry the decorated call on `exceptions`, doubling the wait each time.

    The call runs at most max_retries + 1 times. on_retry(attempt, error,
    delay) is invoked before each wait. Exceptions outside `exceptions`
    propagate untouched.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_retries:
                        raise RetryError(f"Failed after {attempt + 1} attempts: {e}") from e
                    delay = min(base_delay * 2 ** attempt, max_delay)
                    if on_retry:
                        on_retry(attempt + 1, e, delay)
                    (sleep or time.sleep)(delay)
        return wrapper
    return decorator


def is_transient_error(exception: Exception) -> bool:
    """True when the error message looks like a timeout, dropped connection or overload."""
    message = str(exception).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def should_retry_http_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUSES
