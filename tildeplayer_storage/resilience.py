"""Retry policy for remote document calls.

Retries transient failures (network errors, exhausted quota) with
exponential backoff. Credential and addressing failures are surfaced
immediately since they need user intervention.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from .exceptions import ErrorKind, RateLimitedError, RemoteStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Configuration for retry with exponential backoff."""

    max_attempts: int = 3
    backoff_base: float = 1.0  # seconds
    backoff_max: float = 60.0  # cap
    backoff_multiplier: float = 2.0
    retryable_kinds: frozenset[ErrorKind] = frozenset({ErrorKind.NETWORK, ErrorKind.RATE_LIMITED})

    def is_retryable(self, exc: Exception) -> bool:
        return isinstance(exc, RemoteStoreError) and exc.kind in self.retryable_kinds

    def delay_for(self, exc: Exception, attempt: int) -> float | None:
        """Seconds to wait before the next attempt, or None to give up.

        Args:
            exc: The failure of the attempt that just ran
            attempt: Zero-based index of that attempt
        """
        if attempt + 1 >= self.max_attempts or not self.is_retryable(exc):
            return None

        if isinstance(exc, RateLimitedError):
            wait = exc.seconds_until_reset()
            if wait is None:
                return min(self.backoff_base * (self.backoff_multiplier**attempt), self.backoff_max)
            # Quota windows longer than the cap are not worth blocking on
            return wait if wait <= self.backoff_max else None

        return min(self.backoff_base * (self.backoff_multiplier**attempt), self.backoff_max)


NO_RETRY = RetryPolicy(max_attempts=1)


async def retry_with_policy(
    fn: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    policy: RetryPolicy | None = None,
    context_msg: str = "",
    **kwargs: Any,
) -> T:
    """Execute an async function, retrying per the policy.

    Args:
        fn: Async callable to execute
        *args: Positional args for fn
        policy: Retry policy (uses defaults if None)
        context_msg: Extra context for log messages (e.g. operation name)
        **kwargs: Keyword args for fn

    Returns:
        Result of fn

    Raises:
        RemoteStoreError: Last failure once retries are exhausted or the
            failure is not retryable
    """
    cfg = policy or RetryPolicy()
    ctx = f" [{context_msg}]" if context_msg else ""

    attempt = 0
    while True:
        try:
            result = await fn(*args, **kwargs)
        except RemoteStoreError as exc:
            delay = cfg.delay_for(exc, attempt)
            if delay is None:
                if cfg.is_retryable(exc):
                    logger.error(
                        "RETRY_EXHAUSTED: attempt=%d/%d kind=%s%s: %s",
                        attempt + 1,
                        cfg.max_attempts,
                        exc.kind.value if exc.kind else None,
                        ctx,
                        exc,
                    )
                raise

            if exc.kind is ErrorKind.RATE_LIMITED:
                logger.warning(
                    "RATE_LIMITED: attempt=%d/%d, waiting %.1fs for quota reset%s",
                    attempt + 1,
                    cfg.max_attempts,
                    delay,
                    ctx,
                )
            else:
                logger.warning(
                    "RETRYING: attempt=%d/%d kind=%s delay=%.1fs%s: %s",
                    attempt + 1,
                    cfg.max_attempts,
                    exc.kind.value if exc.kind else None,
                    delay,
                    ctx,
                    exc,
                )
            await asyncio.sleep(delay)
            attempt += 1
        else:
            if attempt > 0:
                logger.info(
                    "RETRY_RECOVERED: succeeded on attempt %d/%d%s",
                    attempt + 1,
                    cfg.max_attempts,
                    ctx,
                )
            return result
