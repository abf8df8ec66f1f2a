"""
Token bucket rate limiter for catalog provider calls.

Hey future me – every outbound catalog request goes through ONE shared limiter per
provider. Job workers and sync workers run concurrently for many users, and they all
share the same client-credentials quota at the provider. Without a shared bucket, five
parallel jobs turn into a wall of 429s.

ALGORITHM: Token Bucket
- Bucket holds max_tokens
- Refilled at refill_rate tokens/sec
- Each request consumes 1 token, waits when empty

ADAPTIVE BACKOFF on 429:
- Retry-After header wins when present
- Otherwise 1s, 2s, 4s, ... up to max_backoff_seconds
- Reset after the next successful request

USAGE:
    limiter = get_rate_limiter("spotify")
    async with limiter:
        response = await client.get(url)
    # on 429:
    await limiter.handle_rate_limit_response(retry_after)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterConfig:
    """Configuration for rate limiter.

    Spotify allows roughly 180 requests/minute. We stay at 2 req/sec sustained.
    max_backoff_seconds must be generous: Spotify sends Retry-After values of several
    minutes under heavy load, and capping below that just buys another 429.
    """

    max_tokens: int = 10
    refill_rate: float = 2.0
    max_backoff_seconds: float = 600.0
    initial_backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0


@dataclass
class RateLimiter:
    """Token bucket rate limiter with adaptive backoff."""

    config: RateLimiterConfig = field(default_factory=RateLimiterConfig)
    name: str = "default"

    _tokens: float = field(default=0.0, init=False)
    _last_refill: float = field(default_factory=time.monotonic, init=False)
    _current_backoff: float = field(default=0.0, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.config.max_tokens)
        self._current_backoff = self.config.initial_backoff_seconds

    @classmethod
    def for_spotify(cls) -> "RateLimiter":
        """Limiter tuned for the Spotify Web API (10 burst, 2 req/sec sustained)."""
        return cls(
            config=RateLimiterConfig(
                max_tokens=10,
                refill_rate=2.0,
                max_backoff_seconds=600.0,
                initial_backoff_seconds=1.0,
            ),
            name="spotify",
        )

    def _refill_tokens(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(
            float(self.config.max_tokens), self._tokens + elapsed * self.config.refill_rate
        )
        self._last_refill = now

    async def acquire(self) -> None:
        """Acquire one token, waiting if necessary."""
        while True:
            async with self._lock:
                self._refill_tokens()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait_time = (1.0 - self._tokens) / self.config.refill_rate
            logger.debug(f"RateLimiter[{self.name}]: bucket empty, waiting {wait_time:.2f}s")
            await asyncio.sleep(wait_time)

    async def handle_rate_limit_response(self, retry_after: float | None = None) -> float:
        """Back off after a 429 response.

        Args:
            retry_after: Retry-After header value in seconds, if the provider sent one

        Returns:
            The wait time actually used
        """
        async with self._lock:
            wait_time = float(retry_after) if retry_after is not None else self._current_backoff
            wait_time = min(wait_time, self.config.max_backoff_seconds)

            logger.warning(
                f"RateLimiter[{self.name}]: 429 rate limited, waiting {wait_time:.1f}s "
                f"(backoff level {self._current_backoff:.1f}s)"
            )

            self._current_backoff = min(
                self._current_backoff * self.config.backoff_multiplier,
                self.config.max_backoff_seconds,
            )
            # Drain the bucket so concurrent callers wait too
            self._tokens = 0.0

        await asyncio.sleep(wait_time)
        return wait_time

    def reset_backoff(self) -> None:
        self._current_backoff = self.config.initial_backoff_seconds

    async def __aenter__(self) -> "RateLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        if exc_type is None:
            self.reset_backoff()

    @property
    def available_tokens(self) -> float:
        """Current available tokens (for debugging)."""
        self._refill_tokens()
        return self._tokens


# One limiter per provider, shared by every client instance in the process
_limiters: dict[str, RateLimiter] = {}

_FACTORIES = {
    "spotify": RateLimiter.for_spotify,
}


def get_rate_limiter(provider: str) -> RateLimiter:
    """Get the process-wide limiter for a provider."""
    limiter = _limiters.get(provider)
    if limiter is None:
        factory = _FACTORIES.get(provider)
        limiter = factory() if factory else RateLimiter(name=provider)
        _limiters[provider] = limiter
    return limiter


__all__ = ["RateLimiter", "RateLimiterConfig", "get_rate_limiter"]
