"""Token-bucket pacing for backend requests.

Limiter state lives on the instance; each session owns its own limiter.
"""

import logging
import threading
import time
from typing import Callable

from streamchat.errors import CallCancelledError, check_cancelled

logger = logging.getLogger(__name__)

# Approximate bytes per token when exact usage is unavailable.
BYTES_PER_TOKEN = 4


class TokenBucket:
    """Simple token-bucket limiter; per-process only.

    Notes:
        - Refills continuously at rate tokens per second up to capacity.
        - charge() may drive the balance negative; later acquires wait it off.
    """

    def __init__(
        self,
        rate: float,
        capacity: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self._rate = float(rate)
        self._capacity = max(1.0, float(capacity))
        self._tokens = self._capacity
        self._clock = clock
        self._sleep = sleep
        self._last = clock()

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        delta = now - self._last
        self._last = now
        self._tokens = min(self._capacity, self._tokens + delta * self._rate)

    def _wait(self, seconds: float, cancel: threading.Event | None) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            if cancel.wait(seconds):
                raise CallCancelledError("cancelled while waiting for rate limit")
        else:
            time.sleep(seconds)

    def acquire(self, amount: float = 1.0, cancel: threading.Event | None = None) -> float:
        """Block until amount tokens are available, then take them.

        Requests larger than the capacity are clamped to it.

        Returns:
            Seconds spent waiting.
        """
        amount = min(float(amount), self._capacity)
        waited = 0.0
        while True:
            check_cancelled(cancel)
            self._refill()
            if self._tokens >= amount:
                self._tokens -= amount
                return waited
            delay = (amount - self._tokens) / self._rate
            self._wait(delay, cancel)
            waited += delay

    def charge(self, amount: float) -> None:
        """Debit tokens after the fact."""
        self._refill()
        self._tokens -= amount


class RateLimiter:
    """Requests-per-minute and optional estimated-tokens-per-minute pacing.

    Requests use a burst of one, so only one request is admitted at a time.

    Example:
        >>> limiter = RateLimiter(requests_per_minute=20, tokens_per_minute=40_000)
        >>> limiter.wait(estimated_tokens=1200)
        >>> limiter.record_response(reply)
    """

    def __init__(
        self,
        requests_per_minute: float | None = None,
        tokens_per_minute: int | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._requests: TokenBucket | None = None
        self._tokens: TokenBucket | None = None
        if requests_per_minute is not None:
            self._requests = TokenBucket(
                requests_per_minute / 60, 1, clock=clock, sleep=sleep
            )
        if tokens_per_minute is not None:
            self._tokens = TokenBucket(
                tokens_per_minute / 60, tokens_per_minute, clock=clock, sleep=sleep
            )

    @property
    def enabled(self) -> bool:
        return self._requests is not None or self._tokens is not None

    def wait(self, estimated_tokens: int = 0, cancel: threading.Event | None = None) -> float:
        """Block the calling turn until a request may be sent.

        Args:
            estimated_tokens: Prompt token estimate charged to the token bucket.
            cancel: Optional event aborting the wait.

        Returns:
            Seconds spent waiting.
        """
        waited = 0.0
        if self._requests is not None:
            waited += self._requests.acquire(1, cancel)
        if self._tokens is not None and estimated_tokens > 0:
            waited += self._tokens.acquire(estimated_tokens, cancel)
        if waited:
            logger.info("rate limited for %.1fs", waited)
        return waited

    def record_response(self, content: str) -> int:
        """Charge the approximate token cost of a response.

        Returns:
            Tokens charged.
        """
        tokens = approximate_tokens(content)
        if self._tokens is not None:
            self._tokens.charge(tokens)
        return tokens


def approximate_tokens(content: str) -> int:
    """Approximate tokens from content length in bytes."""
    return -(-len(content.encode("utf-8")) // BYTES_PER_TOKEN)
