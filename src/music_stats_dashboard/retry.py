from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from requests.exceptions import HTTPError
from spotipy.exceptions import SpotifyException

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Auth failures are not transient; retrying only burns the rate-limit budget.
_NON_RETRYABLE_STATUSES = frozenset({401, 403})
_RATE_LIMITED = 429


class SpotifyCallError(RuntimeError):
    """A Spotify call failed after every allowed attempt."""

    def __init__(self, message: str, status: int | None = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.status = status
        self.attempts = attempts


class RateLimitExceededError(SpotifyCallError):
    pass


class RetryExhaustedError(SpotifyCallError):
    pass


def status_of(exc: BaseException) -> int | None:
    if isinstance(exc, SpotifyException):
        return exc.http_status
    if isinstance(exc, HTTPError) and exc.response is not None:
        return exc.response.status_code
    if isinstance(exc, SpotifyCallError):
        return exc.status
    return None


def retry_after_of(exc: BaseException) -> float | None:
    """Seconds requested by the server's Retry-After header, when usable."""
    headers = None
    if isinstance(exc, SpotifyException):
        headers = exc.headers
    elif isinstance(exc, HTTPError) and exc.response is not None:
        headers = exc.response.headers
    if not headers:
        return None
    raw = headers.get("Retry-After") or headers.get("retry-after")
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None


def backoff_delay(attempt: int, initial_delay: float) -> float:
    return initial_delay * 2 ** (attempt - 1)


async def retryable_call(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``operation()`` up to ``max_retries`` times with exponential backoff.

    401/403 responses are re-raised on the first failure. 429 responses wait
    for the server's Retry-After hint when one is given. Once the budget is
    spent a :class:`RateLimitExceededError` or :class:`RetryExhaustedError`
    is raised from the last failure.
    """

    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")

    last_error: Exception | None = None
    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except Exception as exc:
            last_error = exc
            status = status_of(exc)
            logger.warning("Spotify call attempt %d/%d failed (status=%s): %s", attempt, max_retries, status, exc)

            if status in _NON_RETRYABLE_STATUSES:
                logger.error("Authorization error from Spotify (status=%s); not retrying", status)
                raise

            if attempt == max_retries:
                break

            delay = backoff_delay(attempt, initial_delay)
            if status == _RATE_LIMITED:
                hinted = retry_after_of(exc)
                if hinted is not None:
                    delay = hinted
                logger.warning("Rate limited by Spotify; waiting %.2fs before retry", delay)
            else:
                logger.info("Waiting %.2fs before retry", delay)
            await sleep(delay)

    status = status_of(last_error) if last_error is not None else None
    if status == _RATE_LIMITED:
        raise RateLimitExceededError(
            "Rate limit exceeded. Too many requests to Spotify API. Please try again later.",
            status=status,
            attempts=max_retries,
        ) from last_error
    raise RetryExhaustedError(
        f"Spotify call failed after {max_retries} attempts: {last_error}",
        status=status,
        attempts=max_retries,
    ) from last_error
