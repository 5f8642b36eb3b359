# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.

"""
Retry Policy & Manager — bounded retries with a visible backoff schedule.

Retries run in an explicit loop; the budget and every delay are values on the
policy, so `policy.schedule()` is exactly what a caller will wait through.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Type, TypeVar

from tenant_bootstrap.core.config import settings
from tenant_bootstrap.core.metrics import bootstrap_metrics
from tenant_bootstrap.protocols.errors import TransientStoreError

logger = logging.getLogger("bootstrap.retry")

T = TypeVar("T")

LINEAR = "linear"
FIXED = "fixed"
EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior."""
    max_retries: int = 3
    backoff_base: float = 1.0        # seconds
    strategy: str = LINEAR           # linear | fixed | exponential
    backoff_multiplier: float = 2.0  # exponential factor
    max_backoff: float = 60.0        # cap

    def __post_init__(self):
        if self.strategy not in (LINEAR, FIXED, EXPONENTIAL):
            raise ValueError(f"Unknown backoff strategy '{self.strategy}'")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

    def next_delay(self, retry: int) -> float:
        """Delay before the given retry (1-based)."""
        if self.strategy == FIXED:
            delay = self.backoff_base
        elif self.strategy == LINEAR:
            delay = self.backoff_base * retry
        else:
            delay = self.backoff_base * (self.backoff_multiplier ** (retry - 1))
        return min(delay, self.max_backoff)

    def schedule(self) -> List[float]:
        """Every delay the policy will wait through, in order."""
        return [self.next_delay(n) for n in range(1, self.max_retries + 1)]


def transient_policy() -> RetryPolicy:
    """Network/timeout failures: linear 1s, 2s, 3s."""
    return RetryPolicy(
        max_retries=settings.TRANSIENT_MAX_RETRIES,
        backoff_base=settings.TRANSIENT_BACKOFF_BASE,
        strategy=LINEAR,
    )


def not_found_policy() -> RetryPolicy:
    """Read-after-write lag right after signup: fixed short delay."""
    return RetryPolicy(
        max_retries=settings.NOT_FOUND_MAX_RETRIES,
        backoff_base=settings.NOT_FOUND_DELAY,
        strategy=FIXED,
    )


class RetryManager:
    """Applies a RetryPolicy around async operations."""

    def __init__(self, policy: Optional[RetryPolicy] = None, name: str = "retry"):
        self._policy = policy or transient_policy()
        self._name = name

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def should_retry(self, retries_done: int) -> bool:
        """Check if another retry fits in the budget."""
        return retries_done < self._policy.max_retries

    async def wait_before_retry(self, retry: int) -> None:
        """Wait out the scheduled delay before the given retry (1-based)."""
        delay = self._policy.next_delay(retry)
        logger.info("%s: waiting %.1fs before retry %d/%d",
                    self._name, delay, retry, self._policy.max_retries)
        bootstrap_metrics.inc(f"{self._name}:retry")
        if delay > 0:
            await asyncio.sleep(delay)
        else:
            await asyncio.sleep(0)

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        retry_on: Tuple[Type[BaseException], ...] = (TransientStoreError,),
        **kwargs: Any,
    ) -> T:
        """
        Run fn, retrying on the given exception types.

        Re-raises the last failure once the budget is spent.
        """
        retries = 0
        while True:
            try:
                return await fn(*args, **kwargs)
            except retry_on as exc:
                if not await self.should_retry(retries):
                    logger.warning("%s: budget of %d retries exhausted: %s",
                                   self._name, self._policy.max_retries, exc)
                    raise
                retries += 1
                logger.warning("%s: attempt %d failed: %s", self._name, retries, exc)
                await self.wait_before_retry(retries)
