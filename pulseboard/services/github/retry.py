"""Retry and backoff policy for calls against the rate-limited GitHub API."""

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable
from logging import getLogger
from typing import ParamSpec, TypeVar

import httpx

from pulseboard.services.errors import is_rate_limit_response

logger = getLogger(__name__)

T = TypeVar("T")
P = ParamSpec("P")

# Responses that will not change on retry
FATAL_STATUS_CODES = frozenset({401, 403, 404, 422})

# Wait used when a rate limit response carries neither a reset time nor Retry-After
DEFAULT_RATE_LIMIT_WAIT = 60.0


def rate_limit_wait(response: httpx.Response, floor: float) -> float:
    """Compute how long to wait after a rate limit response.

    Uses ``X-RateLimit-Reset`` (epoch seconds) when present, otherwise
    ``Retry-After`` or a 60 second default. Never less than ``floor``.
    """
    reset = response.headers.get("X-RateLimit-Reset")
    if reset:
        try:
            return max(float(reset) - time.time(), floor)
        except ValueError:
            logger.debug(f"Ignoring malformed X-RateLimit-Reset header: {reset!r}")

    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            return max(float(retry_after), floor)
        except ValueError:
            logger.debug(f"Ignoring malformed Retry-After header: {retry_after!r}")

    return max(DEFAULT_RATE_LIMIT_WAIT, floor)


def is_retryable(error: Exception) -> bool:
    """Return True when an upstream failure is worth retrying."""
    if isinstance(error, httpx.HTTPStatusError):
        if is_rate_limit_response(error.response):
            return True
        return error.response.status_code not in FATAL_STATUS_CODES
    return isinstance(error, httpx.TransportError)


async def fetch_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 2.0,
    rate_limit_floor: float = 10.0,
    description: str = "request",
) -> T:
    """Run ``operation`` and retry it on rate limiting and transient failures.

    Args:
        operation: Zero-argument coroutine function performing one upstream call
        max_retries: Number of retries allowed after the initial attempt
        base_delay: Base delay in seconds for exponential backoff
        rate_limit_floor: Minimum wait in seconds after a rate limit response
        description: Label used in log messages

    Returns:
        Whatever ``operation`` returns on its first successful attempt

    Raises:
        The last exception raised by ``operation`` once retries are exhausted,
        or immediately for failures that are not retryable.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except (httpx.HTTPStatusError, httpx.TransportError) as e:
            if not is_retryable(e):
                raise
            if attempt >= max_retries:
                logger.error(f"{description} failed after {max_retries} retries: {e}")
                raise

            attempt += 1
            if isinstance(e, httpx.HTTPStatusError) and is_rate_limit_response(e.response):
                wait_time = rate_limit_wait(e.response, rate_limit_floor)
                logger.warning(
                    f"Rate limit hit on {description} (retry {attempt}/{max_retries}). "
                    f"Waiting {wait_time:.1f} seconds before retry..."
                )
            else:
                wait_time = base_delay * 2 ** (attempt - 1)
                logger.warning(
                    f"Transient error on {description} (retry {attempt}/{max_retries}): {e}. "
                    f"Waiting {wait_time:.1f} seconds before retry..."
                )
            await asyncio.sleep(wait_time)


def retrying(
    max_retries: int = 3,
    base_delay: float = 2.0,
    rate_limit_floor: float = 10.0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator form of :func:`fetch_with_retry` for async callables."""

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await fetch_with_retry(
                lambda: func(*args, **kwargs),
                max_retries=max_retries,
                base_delay=base_delay,
                rate_limit_floor=rate_limit_floor,
                description=func.__name__,
            )

        return wrapper

    return decorator
