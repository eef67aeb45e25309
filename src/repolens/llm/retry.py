"""Declarative retry policy and the single primitive that executes it.

A ``RetryPolicy`` states *what* to try (an ordered list of candidate models)
and *how hard* (attempts and backoff per candidate).  ``execute()`` walks the
policy, calling ``attempt(model)`` until one succeeds:

====================  ==================================================
error                 reaction
====================  ==================================================
``RateLimitError``    retry same model; wait ``retry_after`` if given,
                      otherwise exponential backoff
``TransientError``    retry same model with exponential backoff
``ContentError``      retry same model at most ``content_attempts`` times
``RequestError``      advance to the next model immediately
anything else         treated as transient
====================  ==================================================

When every candidate is exhausted the optional ``fallback(last_error)``
value is returned; without a fallback ``RetryExhaustedError`` is raised.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from ..errors import (
    ContentError,
    RateLimitError,
    RequestError,
    RetryExhaustedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Ordered candidates × per-candidate retry/backoff settings.

    ``min_delay`` is a floor applied to every wait between two attempts.
    Spacing between outbound calls is the request queue's job.
    """

    candidates: tuple[str, ...]
    max_attempts: int = 2
    content_attempts: int = 1
    base_delay: float = 1.0
    max_delay: float = 30.0
    min_delay: float = 0.0

    def __post_init__(self) -> None:
        if not self.candidates:
            raise ValueError("RetryPolicy needs at least one candidate model")
        if self.max_attempts < 1 or self.content_attempts < 1:
            raise ValueError("Attempt counts must be >= 1")

    def backoff(self, attempt: int) -> float:
        """Exponential delay before retry number *attempt* (1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** attempt))

    def with_candidates(self, candidates: Sequence[str]) -> RetryPolicy:
        return RetryPolicy(
            candidates=tuple(candidates),
            max_attempts=self.max_attempts,
            content_attempts=self.content_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            min_delay=self.min_delay,
        )

    @property
    def total_attempts(self) -> int:
        """Upper bound on calls a single ``execute()`` can make."""
        return len(self.candidates) * self.max_attempts


def _attempt_cap(policy: RetryPolicy, exc: Exception) -> int:
    if isinstance(exc, ContentError):
        return min(policy.content_attempts, policy.max_attempts)
    if isinstance(exc, RequestError):
        return 1
    return policy.max_attempts


def _delay_for(policy: RetryPolicy, exc: Exception, attempt: int) -> float:
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        delay = min(exc.retry_after, policy.max_delay)
    else:
        delay = policy.backoff(attempt)
    return max(delay, policy.min_delay)


async def execute(
    policy: RetryPolicy,
    attempt: Callable[[str], Awaitable[T]],
    *,
    fallback: Optional[Callable[[Exception], T]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run *attempt* against the candidates of *policy* until it succeeds."""
    last_error: Optional[Exception] = None
    calls = 0

    for model in policy.candidates:
        tries = 0
        while True:
            if calls > 0:
                if tries == 0:
                    # Switching model: only the floor applies.
                    wait = policy.min_delay
                else:
                    wait = _delay_for(policy, last_error, tries)  # type: ignore[arg-type]
                if wait > 0:
                    await sleep(wait)

            calls += 1
            tries += 1
            try:
                logger.debug("Calling %s (attempt %d)", model, tries)
                return await attempt(model)
            except Exception as exc:
                last_error = exc
                cap = _attempt_cap(policy, exc)
                logger.warning(
                    "Model %s failed (attempt %d/%d): %s",
                    model, tries, cap, exc,
                )
                if tries >= cap:
                    break

    exhausted = RetryExhaustedError(last_error, calls)
    if fallback is not None:
        logger.warning("All models exhausted after %d calls; using fallback", calls)
        return fallback(exhausted)
    raise exhausted
