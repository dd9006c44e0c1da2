"""
Rate limiting and retry policy for outbound Shopify calls.

RetryPolicy is pure (no I/O, jitter passed in) so backoff math can be
tested without sleeping. wait_for_policy plugs it into tenacity.
SlidingWindowRateLimiter holds the process-wide call window; one instance
is shared by every sync run in the process.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

import structlog
from tenacity import RetryCallState
from tenacity.wait import wait_base

from config.settings import Settings

logger = structlog.get_logger(__name__)


class FailureKind(str, Enum):
    """How a failed remote call is classified."""
    THROTTLED = "throttled"   # 429 / GraphQL THROTTLED
    NETWORK = "network"       # timeouts, resets, 5xx, unreadable bodies
    TERMINAL = "terminal"     # 400/422 and friends


class TransientShopifyError(Exception):
    """
    A failed attempt that may succeed if repeated.

    Raised inside a single attempt and consumed by the retry loop; callers
    of ShopifyClient never see it.
    """

    def __init__(self, kind: FailureKind, error: str, retry_after: Optional[float] = None):
        self.kind = kind
        self.error = error
        self.retry_after = retry_after
        super().__init__(error)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff computation and retry budget.

    Throttling backs off exponentially from base_delay, network failures
    wait base_delay every time. Every delay gets +/- jitter_ratio of random
    spread and is capped at max_delay.
    """

    max_retries: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter_ratio: float = 0.1

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            jitter_ratio=settings.retry_jitter_ratio,
        )

    @property
    def max_attempts(self) -> int:
        """First attempt plus retries."""
        return self.max_retries + 1

    def _jittered(self, delay: float, jitter: float) -> float:
        # jitter in [-1, 1] scales to +/- jitter_ratio of the delay
        jitter = max(-1.0, min(1.0, jitter))
        spread = delay * self.jitter_ratio * jitter
        return max(0.0, min(self.max_delay, delay + spread))

    def throttle_delay(self, attempt: int, jitter: float = 0.0) -> float:
        """Delay before retry number `attempt` (0-based) after throttling."""
        raw = self.base_delay * (2 ** attempt)
        return self._jittered(min(raw, self.max_delay), jitter)

    def network_retry_delay(self, jitter: float = 0.0) -> float:
        """Delay before retrying a network failure (base delay, not exponential)."""
        return self._jittered(min(self.base_delay, self.max_delay), jitter)

    def can_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries

    def next_delay(
        self,
        kind: FailureKind,
        attempt: int,
        jitter: float = 0.0,
        retry_after: Optional[float] = None,
    ) -> Optional[float]:
        """
        Delay before the next attempt, or None to give up.

        Args:
            kind: Classification of the failure that just happened
            attempt: Retries already spent (0 after the first failure)
            jitter: Random value in [-1, 1]
            retry_after: Server-requested wait; raises the delay, still
                capped at max_delay

        Returns:
            Seconds to wait, or None if the failure is terminal or the
            retry budget is spent
        """
        if kind == FailureKind.TERMINAL or not self.can_retry(attempt):
            return None
        if kind == FailureKind.THROTTLED:
            delay = self.throttle_delay(attempt, jitter)
        else:
            delay = self.network_retry_delay(jitter)
        if retry_after is not None:
            delay = min(self.max_delay, max(delay, retry_after))
        return delay


class wait_for_policy(wait_base):
    """
    tenacity wait strategy backed by RetryPolicy.next_delay.

    The failed attempt must have raised TransientShopifyError; its kind and
    Retry-After drive the delay.
    """

    def __init__(self, policy: RetryPolicy, rng: Optional[random.Random] = None):
        self.policy = policy
        self.rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        failure = retry_state.outcome.exception()
        delay = self.policy.next_delay(
            failure.kind,
            retry_state.attempt_number - 1,
            random_jitter(self.rng),
            retry_after=failure.retry_after,
        )
        # None only once the budget is spent; stop_after_attempt ends the loop there
        return delay if delay is not None else 0.0


class SlidingWindowRateLimiter:
    """
    At most `max_calls` calls in any `window_seconds` window.

    acquire() blocks until a slot is free and records the call. A call the
    server throttled anyway is handed back with release() so it does not
    count against the window.
    """

    def __init__(
        self,
        max_calls: int,
        window_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_calls < 1:
            raise ValueError("max_calls must be >= 1")
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._calls: list[float] = []
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SlidingWindowRateLimiter":
        return cls(
            max_calls=settings.rate_limit_calls,
            window_seconds=settings.rate_limit_window_seconds,
        )

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        self._calls = [t for t in self._calls if t > cutoff]

    @property
    def in_window(self) -> int:
        """Calls currently counted against the window."""
        self._prune(self._clock())
        return len(self._calls)

    async def acquire(self) -> float:
        """
        Wait for a free slot and record the call.

        Returns:
            The slot timestamp (pass to release() if the call is throttled)
        """
        # Waiters queue on the lock so slots are handed out in arrival order
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return now
                wait = self._calls[0] + self.window_seconds - now
                logger.debug("rate_limit_wait", wait_seconds=round(wait, 3))
                await self._sleep(max(wait, 0.001))

    def release(self, slot: float) -> None:
        """Give back a slot taken by a call the server throttled."""
        try:
            self._calls.remove(slot)
        except ValueError:
            pass  # already aged out of the window


def random_jitter(rng: Optional[random.Random] = None) -> float:
    """Uniform jitter in [-1, 1]."""
    return (rng or random).uniform(-1.0, 1.0)
