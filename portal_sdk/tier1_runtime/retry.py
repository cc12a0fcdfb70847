"""
portal_sdk.tier1_runtime.retry
───────────────────────────────────
Retry policy for writes. Backed by Tenacity. Writes are retried only for
error kinds that a fresh attempt can fix (a name collision gets a new
name); everything else is terminal and reraised unchanged.

Usage:
    async for attempt in retry_policy(max_attempts=2, on=[CollisionError]):
        with attempt:
            n = attempt.retry_state.attempt_number
            await put(name_for(n))
"""
from __future__ import annotations

from typing import Type

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_none,
)

from portal_sdk.tier0_core.errors import CollisionError


def retry_policy(
    max_attempts: int = 2,
    on: list[Type[Exception]] | None = None,
) -> AsyncRetrying:
    """
    Build an ``AsyncRetrying`` iterator.

    Args:
        max_attempts: Total number of attempts (including first).
        on:           Exception types that trigger another attempt.
                      Defaults to ``[CollisionError]``.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_none(),
        retry=retry_if_exception_type(tuple(on or [CollisionError])),
        reraise=True,
    )


__all__ = ["retry_policy"]
