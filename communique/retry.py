"""HTTP retry with exponential backoff for transient failures.

Wraps a single request attempt. Retries on 429/500/502/503/529 and on
connect or timeout errors; everything else returns (or raises) at once.
When retries run out the last response is handed back unchanged so the
caller inspects its status as usual.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 529})

_MAX_JITTER = 0.5  # seconds


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy. Delays are in seconds."""

    max_retries: int = 5
    initial_delay: float = 0.5
    max_delay: float = 30.0


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUSES


def _is_retryable_error(error: httpx.HTTPError) -> bool:
    return isinstance(error, (httpx.ConnectError, httpx.TimeoutException))


def _retry_after(response: httpx.Response) -> float | None:
    """Integer seconds from a Retry-After header, if present."""
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(int(value.strip()))
    except ValueError:
        return None


async def retry_request(
    context: str,
    request_fn: Callable[[], Awaitable[httpx.Response]],
    config: RetryConfig | None = None,
) -> httpx.Response:
    """Call request_fn until it succeeds, fails permanently, or retries run out.

    Args:
        context: Label used in log messages (e.g. "Anthropic API")
        request_fn: Zero-arg coroutine factory issuing one HTTP attempt
        config: Retry policy, defaults to RetryConfig()

    Returns:
        The first non-retryable response, or the last response once
        max_retries is exhausted.

    Raises:
        httpx.HTTPError: non-retryable transport errors immediately, and
            the last connect/timeout error once retries are exhausted.
    """
    config = config or RetryConfig()
    delay = config.initial_delay
    attempts = config.max_retries + 1

    for attempt in range(attempts):
        try:
            response = await request_fn()
        except httpx.HTTPError as e:
            if not _is_retryable_error(e) or attempt == config.max_retries:
                raise
            wait = delay + random.uniform(0, _MAX_JITTER)
            logger.warning(
                "%s: %s (attempt %d/%d), retrying in %.2fs",
                context, e, attempt + 1, attempts, wait,
            )
            await asyncio.sleep(wait)
            delay = min(delay * 2, config.max_delay)
            continue

        if not is_retryable_status(response.status_code):
            return response
        if attempt == config.max_retries:
            logger.warning(
                "%s: %d after %d attempts, giving up",
                context, response.status_code, attempts,
            )
            return response

        wait = delay
        if response.status_code == 429:
            retry_after = _retry_after(response)
            if retry_after is not None:
                wait = retry_after
        wait += random.uniform(0, _MAX_JITTER)

        logger.warning(
            "%s: %d (attempt %d/%d), retrying in %.2fs",
            context, response.status_code, attempt + 1, attempts, wait,
        )
        await asyncio.sleep(wait)
        delay = min(delay * 2, config.max_delay)

    raise AssertionError("unreachable")
