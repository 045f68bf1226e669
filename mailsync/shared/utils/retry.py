"""Tenacity retry wrapper for transient vendor failures."""

from __future__ import annotations

from collections.abc import Callable

from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mailsync.core.config import Settings
from mailsync.domain.exceptions import NetworkTransientException


def with_retry(
    settings: Settings,
    *,
    retryable_exceptions: tuple[type[BaseException], ...] = (NetworkTransientException,),
) -> Callable:
    """Return a tenacity retry decorator configured from settings.

    Usage::

        @with_retry(settings)
        async def call_vendor() -> dict: ...
    """
    return retry(
        stop=stop_after_attempt(max(1, settings.network_retry_attempts)),
        wait=wait_exponential(
            multiplier=settings.network_retry_initial_wait_seconds,
            min=settings.network_retry_initial_wait_seconds,
            max=settings.network_retry_max_wait_seconds,
        ),
        retry=retry_if_exception_type(retryable_exceptions),
        reraise=True,
    )
