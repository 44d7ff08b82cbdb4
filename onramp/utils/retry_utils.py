"""
Retry helpers shared by the upstream clients and the settlement executor.

One policy object describes attempt cap, backoff and per-call timeout; a
classifier decides whether an error is worth another attempt.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from onramp.config import (
    HTTP_TIMEOUT,
    UPSTREAM_BASE_DELAY,
    UPSTREAM_MAX_ATTEMPTS,
    UPSTREAM_MAX_DELAY,
)

T = TypeVar("T")

# Substrings of RPC errors that mean "resend with a fresh blockhash"
TRANSIENT_ERROR_MARKERS = (
    "blockheightexceeded",
    "block height exceeded",
    "blockhash not found",
    "blockhashnotfound",
    "transaction expired",
    "timeout",
    "timed out",
)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt cap, capped exponential backoff and per-attempt timeout."""
    max_attempts: int = UPSTREAM_MAX_ATTEMPTS
    base_delay: float = UPSTREAM_BASE_DELAY
    max_delay: float = UPSTREAM_MAX_DELAY
    timeout: Optional[float] = HTTP_TIMEOUT

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following `attempt` (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def always_retry(error: BaseException) -> bool:
    return True


def is_transient_error(error: BaseException) -> bool:
    """
    Classify a signing/broadcast error as transient (expiry, timeout).

    Args:
        error: The exception raised while submitting a transaction

    Returns:
        True if resending with a fresh blockhash could succeed
    """
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    text = f"{type(error).__name__} {error}".lower()
    return any(marker in text for marker in TRANSIENT_ERROR_MARKERS)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    is_retryable: Callable[[BaseException], bool] = always_retry,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run an async operation with timeout and capped exponential backoff.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Attempt cap, backoff and timeout
        is_retryable: Classifier; a False result re-raises immediately
        description: Name used in log messages
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The operation's result

    Raises:
        The last error once attempts are exhausted or a fatal error occurs
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            if policy.timeout:
                return await asyncio.wait_for(operation(), timeout=policy.timeout)
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not is_retryable(e):
                logger.error(f"{description} failed with a non-retryable error: {str(e)}")
                raise

            if attempt >= policy.max_attempts:
                logger.error(f"{description} failed after {attempt} attempts: {str(e)}")
                raise

            backoff = policy.delay_for(attempt)
            logger.warning(
                f"{description} failed, retrying ({attempt}/{policy.max_attempts}) after {backoff:.2f}s: {str(e)}",
                extra={"retry_count": attempt, "backoff": backoff, "error": str(e)}
            )
            await sleep(backoff)
