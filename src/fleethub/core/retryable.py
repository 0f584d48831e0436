"""Retryable error classification with exponential backoff retry.

Classifies host agent call failures as retryable (transient) or
non-retryable (permanent). Only idempotent host agent operations
(start, stop, import, discard, delete) are wrapped; artifact streams
are never retried mid-flight.

Usage:
    from fleethub.core.retryable import with_retry

    await with_retry(lambda: runtime.start_container(name))
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

from fleethub.core.logging_schema import ErrorClass

logger = logging.getLogger(__name__)

T = TypeVar("T")


HTTPX_RETRYABLE = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.RemoteProtocolError,
)

HTTPX_NON_RETRYABLE = (
    httpx.InvalidURL,
    httpx.UnsupportedProtocol,
    httpx.TooManyRedirects,
)


def is_httpx_retryable(exc: Exception) -> bool:
    """Check if httpx exception is retryable."""
    if isinstance(exc, HTTPX_RETRYABLE):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return True
        if 400 <= status < 500:
            return False
        if status >= 500:
            return True
    return False


def classify_error(exc: Exception) -> ErrorClass | None:
    """Classify error as transient, permanent or timeout.

    Returns None when the error cannot be classified; callers treat
    unknown errors as permanent.
    """
    if isinstance(exc, asyncio.TimeoutError):
        return ErrorClass.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        return ErrorClass.TRANSIENT if is_httpx_retryable(exc) else ErrorClass.PERMANENT
    if isinstance(exc, HTTPX_RETRYABLE):
        return ErrorClass.TRANSIENT
    if isinstance(exc, HTTPX_NON_RETRYABLE):
        return ErrorClass.PERMANENT
    return None


def is_retryable(exc: Exception) -> bool:
    return classify_error(exc) in (ErrorClass.TRANSIENT, ErrorClass.TIMEOUT)


def _response_detail(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except (ValueError, httpx.StreamError):
        return None
    if not isinstance(body, dict):
        return None
    if isinstance(body.get("detail"), str):
        return body["detail"]
    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return None


def describe_error(exc: BaseException) -> str:
    """Operator-facing message for a failure, shown on jobs and statuses.

    Host agent HTTP errors are reduced to the status and the agent's own
    message instead of the full request URL.
    """
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        detail = _response_detail(exc.response)
        return f"Host agent returned {status}: {detail}" if detail else f"Host agent returned {status}"
    if isinstance(exc, httpx.TimeoutException):
        return "Host agent request timed out"
    if isinstance(exc, httpx.TransportError):
        return f"Host agent unreachable: {exc}" if str(exc) else "Host agent unreachable"
    return str(exc) or type(exc).__name__


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> T:
    """Execute async operation with exponential backoff retry.

    Only retries transient errors; anything else is raised immediately.

    Args:
        coro_factory: Factory function that creates new coroutine for each attempt
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 30.0)

    Returns:
        Result of successful operation
    """
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except Exception as exc:
            if not is_retryable(exc):
                raise

            error_class = classify_error(exc)
            if attempt == max_retries:
                logger.error(
                    "Max retries exceeded (%d attempts): %s",
                    max_retries + 1,
                    exc,
                    extra={"error_class": error_class, "attempt": attempt + 1},
                )
                raise

            delay = min(base_delay * (2**attempt), max_delay)
            # Jitter: 50% ~ 150% of delay
            jittered_delay = delay * (0.5 + random.random())
            logger.warning(
                "Retryable error (attempt %d/%d, retry in %.1fs): %s",
                attempt + 1,
                max_retries + 1,
                jittered_delay,
                exc,
                extra={
                    "error_class": error_class,
                    "attempt": attempt + 1,
                    "delay": jittered_delay,
                },
            )
            await asyncio.sleep(jittered_delay)

    raise RuntimeError("Unexpected state in with_retry")
