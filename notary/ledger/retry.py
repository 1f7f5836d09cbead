from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from notary.core.errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int
    initial_delay: float
    max_delay: float
    backoff_multiplier: float = 2.0

    def delays(self) -> Iterator[float]:
        """Yield the sleep taken before each retry, in order."""
        delay = self.initial_delay
        for _ in range(self.max_retries):
            yield delay
            delay = min(delay * self.backoff_multiplier, self.max_delay)


class OperationClass(str, Enum):
    ACCOUNT = "account"
    DID = "did"
    PROFILE = "profile"
    REGISTRY = "registry"
    ENTRY = "entry"


RETRY_POLICIES: dict[OperationClass, RetryPolicy] = {
    # Wraps keypair generation, funding and identity anchoring as one unit.
    OperationClass.ACCOUNT: RetryPolicy(max_retries=3, initial_delay=2.0, max_delay=15.0),
    OperationClass.DID: RetryPolicy(max_retries=3, initial_delay=2.0, max_delay=10.0),
    OperationClass.PROFILE: RetryPolicy(max_retries=3, initial_delay=2.0, max_delay=10.0),
    OperationClass.REGISTRY: RetryPolicy(max_retries=3, initial_delay=2.0, max_delay=10.0),
    OperationClass.ENTRY: RetryPolicy(max_retries=3, initial_delay=2.0, max_delay=10.0),
}


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    context: str,
    sleep: Sleep = asyncio.sleep,
) -> T:
    delays = policy.delays()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if not getattr(exc, "retryable", True):
                raise
            delay = next(delays, None)
            if delay is None:
                raise RetryExhaustedError(context, exc, attempts=attempt) from exc
            logger.warning(
                "%s: attempt %s/%s failed (%s); retry in %.1fs",
                context,
                attempt,
                policy.max_retries + 1,
                exc,
                delay,
            )
            await sleep(delay)
