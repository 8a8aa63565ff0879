"""Exponential backoff for the HTTP transports.

Only network fetches (hypervisor configuration, extension pack download)
go through here. VBoxManage invocations are never retried; their failures
reach the caller unchanged.

Public API:
    RetryPolicy: Attempt count and delay schedule
    retry_with_exponential_backoff: Decorator form of RetryPolicy.call
    RetryableHTTPError: Raised by transports for transient HTTP statuses
    should_retry_http_error: Transient-status check
"""

import functools
import logging
import random
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import requests

logger = logging.getLogger(__name__)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])

RETRYABLE_HTTP_CODES = frozenset({408, 429, 500, 502, 503, 504})

MAX_LOGGED_ERROR = 200
_CREDENTIAL_PARAM = re.compile(r"(secret|password|token|key|sig)=.*", re.IGNORECASE)


class RetryableHTTPError(Exception):
    """An HTTP response whose status is worth another attempt."""

    def __init__(self, status_code: int, url: str):
        super().__init__(f"HTTP {status_code} from {url}")
        self.status_code = status_code
        self.url = url


TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    TimeoutError,
    ConnectionError,
    requests.ConnectionError,
    requests.Timeout,
    RetryableHTTPError,
)


def should_retry_http_error(status_code: int) -> bool:
    return status_code in RETRYABLE_HTTP_CODES


def redact_error(error: Exception) -> str:
    """Error text safe for logs: truncated, with credential parameters masked."""
    text = str(error)
    if len(text) > MAX_LOGGED_ERROR:
        text = text[:MAX_LOGGED_ERROR] + "..."
    return _CREDENTIAL_PARAM.sub(lambda m: f"{m.group(1)}=***", text, count=1)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a transient failure.

    The nth pause is initial_delay * 2**(n-1), optionally jittered by 25%
    either way, and never longer than max_delay.
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = True
    retry_on: tuple[type[Exception], ...] = TRANSIENT_ERRORS

    def pause_before(self, attempt: int) -> float:
        """Seconds to wait before attempt (2-based: the first retry)."""
        delay = self.initial_delay * 2 ** (attempt - 2)
        if self.jitter:
            delay += random.uniform(-0.25 * delay, 0.25 * delay)
        return min(delay, self.max_delay)

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Invoke func, retrying on retry_on errors until attempts run out."""
        name = getattr(func, "__name__", repr(func))
        attempt = 1
        while True:
            try:
                result = func(*args, **kwargs)
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.error(f"{name} gave up after {attempt} attempts: {redact_error(e)}")
                    raise
                attempt += 1
                pause = self.pause_before(attempt)
                logger.warning(
                    f"{name} failed ({redact_error(e)}), "
                    f"attempt {attempt}/{self.max_attempts} in {pause:.2f}s"
                )
                time.sleep(pause)
                continue
            if attempt > 1:
                logger.info(f"{name} succeeded on attempt {attempt}/{self.max_attempts}")
            return result


def retry_with_exponential_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
) -> Callable[[F], F]:
    """Decorator applying a RetryPolicy to every call of the wrapped function."""
    policy = RetryPolicy(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        jitter=jitter,
        retry_on=retryable_exceptions or TRANSIENT_ERRORS,
    )

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return policy.call(func, *args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


__all__ = [
    "RetryPolicy",
    "RetryableHTTPError",
    "redact_error",
    "retry_with_exponential_backoff",
    "should_retry_http_error",
]
