"""Bounded retry with exponential backoff for async operations."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from distro.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    label: str,
    retry_on: Tuple[Type[BaseException], ...],
    attempts: int | None = None,
    backoff: float | None = None,
) -> T:
    """
    Await ``fn()`` up to ``attempts`` times.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately. The last retryable exception is re-raised once attempts
    are exhausted.
    """
    attempts = max(1, attempts if attempts is not None else settings.PAYOUT_BATCH_MAX_ATTEMPTS)
    backoff = settings.RETRY_BACKOFF_SECONDS if backoff is None else backoff

    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except retry_on as exc:
            if attempt >= attempts:
                logger.error(f"{label} failed after {attempt} attempt(s): {exc}")
                raise
            sleep_for = max(0.0, backoff) * (2 ** (attempt - 1))
            logger.warning(
                f"{label} attempt {attempt}/{attempts} failed: {exc}. Retrying in {sleep_for:.2f}s"
            )
            if sleep_for:
                await asyncio.sleep(sleep_for)

    raise RuntimeError("unreachable")  # pragma: no cover
