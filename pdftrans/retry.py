"""Retry layer for recognition and translation calls.

Every external call goes through :func:`call_with_retry`. Failures are
classified into retryable (timeouts, connection errors, upstream 5xx) and
permanent (everything else). Retryable failures are retried with exponential
backoff and jitter; permanent failures are raised immediately.

Usage:
    >>> text = await call_with_retry(
    ...     lambda: client.recognize_text(image_base64),
    ...     policy=RetryPolicy(max_retries=3),
    ...     label="task-1-p3",
    ... )
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .constants import DEFAULT_MAX_RETRIES, RETRY_BASE_DELAYS, RETRY_JITTER_RATIO, RETRY_MIN_DELAY
from .exceptions import (
    PermanentStageError,
    RetriesExhaustedError,
    RetryableStageError,
    StageCallError,
    TaskCancelledError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Classifier = Callable[[BaseException], StageCallError]


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters.

    Attributes:
        max_retries: Attempts allowed after the first one
        base_delays: Base delay (seconds) per retry; retries beyond the tuple reuse the last value
        jitter_ratio: Uniform jitter as a fraction of the base delay
        min_delay: Floor (seconds) applied after jitter
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delays: tuple[float, ...] = RETRY_BASE_DELAYS
    jitter_ratio: float = RETRY_JITTER_RATIO
    min_delay: float = RETRY_MIN_DELAY


def compute_backoff_delay(attempt: int, policy: RetryPolicy, rng: random.Random | None = None) -> float:
    """Return the delay before retry number ``attempt`` (0-based).

    Args:
        attempt: Index of the retry about to happen
        policy: Backoff parameters
        rng: Random source for jitter (module RNG when omitted)

    Returns:
        Delay in seconds, within ``base * [1 - jitter, 1 + jitter]`` and at least ``min_delay``
    """
    if not policy.base_delays:
        return policy.min_delay
    base = policy.base_delays[min(attempt, len(policy.base_delays) - 1)]
    spread = base * policy.jitter_ratio
    uniform = rng.uniform if rng is not None else random.uniform
    jitter = uniform(-spread, spread) if spread > 0 else 0.0
    return max(base + jitter, policy.min_delay)


def classify_error(exc: BaseException) -> StageCallError:
    """Default classifier: pass classified errors through, everything else is permanent."""
    if isinstance(exc, StageCallError):
        return exc
    return PermanentStageError(f"Unexpected error: {type(exc).__name__}: {exc}")


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy | None = None,
    classify: Classifier = classify_error,
    label: str = "",
    should_abort: Callable[[], bool] | None = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    rng: random.Random | None = None,
) -> T:
    """Run ``operation`` with classified retries.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        policy: Backoff parameters (defaults to RetryPolicy())
        classify: Maps a raised exception to a retryable or permanent error
        label: Identifier used in log messages (e.g. "<task>-p<page>")
        should_abort: Checked before every retry; True stops the loop
        sleep: Awaitable sleep, injectable for tests
        rng: Random source for jitter

    Returns:
        The operation's result

    Raises:
        PermanentStageError: On the first permanent failure
        RetriesExhaustedError: When retryable failures outlast ``policy.max_retries``
        TaskCancelledError: When ``should_abort`` returns True before a retry
    """
    policy = policy or RetryPolicy()

    attempt = 0
    while True:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify(exc)
            if not isinstance(error, RetryableStageError):
                raise error from exc
            if attempt >= policy.max_retries:
                raise RetriesExhaustedError(str(error), policy.max_retries) from exc

            delay = compute_backoff_delay(attempt, policy, rng)
            logger.warning(
                "[%s] retry %d/%d: %s (waiting %.0fms)",
                label,
                attempt + 1,
                policy.max_retries,
                error,
                delay * 1000,
            )
            await sleep(delay)
            attempt += 1

            if should_abort is not None and should_abort():
                raise TaskCancelledError() from exc
