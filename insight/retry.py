"""Bounded exponential-backoff retry for provider calls.

The policy is provider-agnostic: it only inspects the :class:`ErrorKind` of
a failure, which the adapters assign at their boundary.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

from insight.cancellation import CancellationToken, ensure_token
from insight.errors import AbortedError, error_kind

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY = 1.0   # seconds; doubled after every failed attempt


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    token: Optional[CancellationToken] = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """Run *operation*, retrying transient failures.

    Makes at most ``max_retries + 1`` attempts, waiting ``base_delay``,
    ``base_delay * 2``, ... between them.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        token: Cancellation token observed before every attempt and during
            every wait.
        max_retries: Retries allowed after the first attempt.
        base_delay: First wait in seconds.
        sleep: Wait implementation; defaults to the token's cancellable sleep.

    Raises:
        AbortedError: If the token is signaled, regardless of retries left.
        Exception: The last failure, unchanged, when it is not retryable or
            retries are exhausted.
    """
    token = ensure_token(token)
    wait = sleep or token.sleep
    retries_left = max_retries
    delay = base_delay
    attempt = 0

    while True:
        token.raise_if_cancelled()
        attempt += 1
        try:
            return await operation()
        except AbortedError:
            raise
        except Exception as exc:
            if token.cancelled:
                raise AbortedError(token.reason or "Aborted") from exc

            kind = error_kind(exc)
            if not kind.retryable or retries_left <= 0:
                raise

            logger.warning(
                "Attempt %d failed (%s: %s); retrying in %.1fs (%d retries left)",
                attempt, kind.value, exc, delay, retries_left,
            )
            await wait(delay)
            retries_left -= 1
            delay *= 2
