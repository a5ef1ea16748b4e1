"""Bounded exponential backoff for calls to external collaborators."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from autoassign.domain.exceptions import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 2.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")

    def delays(self) -> list[float]:
        """Sleep before each retry (one fewer than attempts)."""
        out = []
        delay = self.base_delay
        for _ in range(self.attempts - 1):
            out.append(min(delay, self.max_delay))
            delay *= self.multiplier
        return out


async def with_backoff(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    operation: str,
    retry_on: tuple[type[BaseException], ...] = (TransientError,),
) -> T:
    """Run *call*, retrying on *retry_on* with exponential backoff.

    The last error is re-raised once attempts are exhausted. Anything not in
    *retry_on* propagates immediately.
    """
    delays = policy.delays()
    for attempt in range(1, policy.attempts + 1):
        try:
            return await call()
        except retry_on as e:
            if attempt >= policy.attempts:
                logger.error("%s failed after %d attempts: %s", operation, attempt, e)
                raise
            backoff = delays[attempt - 1]
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.2fs: %s",
                operation, attempt, policy.attempts, backoff, e,
            )
            await asyncio.sleep(backoff)
    raise RuntimeError("unreachable")  # pragma: no cover
