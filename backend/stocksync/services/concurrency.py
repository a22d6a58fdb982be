# Overview: Retry backoff and timeout helpers for remote calls made by the reconciler.

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from .remote_store import TransientError

T = TypeVar("T")


def backoff_delay(attempt: int, *, base: float, cap: float) -> float:
    """
    Exponential backoff for the given (1-based) failed attempt.

    attempt 1 -> base, 2 -> 2*base, 3 -> 4*base ... capped at `cap`.
    """
    if attempt < 1 or base <= 0:
        return 0.0
    return min(cap, base * (2 ** (attempt - 1)))


async def call_with_timeout(awaitable: Awaitable[T], timeout: float) -> T:
    """
    Await one remote call with a deadline.

    A timeout is a TransientError like any other network failure.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise TransientError(f"timed out after {timeout}s") from exc
