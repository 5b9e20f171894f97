"""
Per-origin admission control for page rendering.

Each origin gets its own RequestRateLimiter enforcing three independent
constraints: a maximum number of in-flight requests, a burst limit over a
sliding window, and a minimum delay between request starts. Callers that hit
the concurrency cap wait in a FIFO queue; a slot freed by release() is handed
directly to the head of that queue so late arrivals cannot overtake it.
"""
import asyncio
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, replace
from typing import AsyncIterator, Callable, Deque, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Delay before a queued caller is woken after a slot frees up
WAKE_DELAY = 0.1


@dataclass(frozen=True)
class RateLimiterConfig:
    min_delay: float = 2.0  # seconds between request starts
    max_concurrent: int = 2
    burst_limit: int = 5  # requests allowed per burst window
    burst_window: float = 60.0  # seconds

    def __post_init__(self):
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if self.burst_limit < 1:
            raise ValueError("burst_limit must be at least 1")
        if self.min_delay < 0 or self.burst_window < 0:
            raise ValueError("delays must not be negative")


HIGH_TRAFFIC_SITES = ("allrecipes.com", "foodnetwork.com", "food.com", "epicurious.com")
MEDIUM_TRAFFIC_SITES = ("bonappetit.com", "seriouseats.com", "tasty.co", "delish.com")

HIGH_TRAFFIC_CONFIG = RateLimiterConfig(min_delay=3.0, max_concurrent=1, burst_limit=3)
MEDIUM_TRAFFIC_CONFIG = RateLimiterConfig(min_delay=2.0, max_concurrent=2, burst_limit=5)
DEFAULT_SITE_CONFIG = RateLimiterConfig(min_delay=1.5, max_concurrent=2, burst_limit=7)


class RequestRateLimiter:
    """Admission control for a single origin."""

    def __init__(self, config: Optional[RateLimiterConfig] = None, *,
                 clock: Callable[[], float] = time.monotonic,
                 wake_delay: float = WAKE_DELAY):
        self.config = config or RateLimiterConfig()
        self._clock = clock
        self._wake_delay = wake_delay
        self._last_request_time: Optional[float] = None
        self._active = 0  # granted and not yet released
        self._slots = 0  # active plus callers past the concurrency gate
        self._history: Deque[float] = deque()
        self._waiters: Deque[asyncio.Future] = deque()
        self._gate = asyncio.Lock()
        self.last_used = clock()

    @property
    def active_requests(self) -> int:
        return self._active

    @property
    def queue_length(self) -> int:
        return len(self._waiters)

    @property
    def is_idle(self) -> bool:
        return self._active == 0 and self._slots == 0 and not self._waiters

    async def acquire(self) -> None:
        """Suspend until a request to this origin may start."""
        self.last_used = self._clock()
        await self._acquire_slot()
        try:
            # One caller at a time checks the window and delay constraints,
            # so two grants can never race past the same check.
            async with self._gate:
                await self._wait_for_window()
                self._grant()
        except BaseException:
            self._release_slot()
            raise

    def release(self) -> None:
        """Mark one admitted request as finished."""
        if self._active == 0:
            logger.warning("release() called without a matching acquire()")
            return
        self._active -= 1
        self.last_used = self._clock()
        logger.debug("Request completed: active=%d queued=%d", self._active, len(self._waiters))
        self._release_slot()

    @asynccontextmanager
    async def slot(self) -> AsyncIterator["RequestRateLimiter"]:
        await self.acquire()
        try:
            yield self
        finally:
            self.release()

    async def _acquire_slot(self) -> None:
        if self._slots < self.config.max_concurrent and not self._waiters:
            self._slots += 1
            return

        logger.debug("Concurrent request limit reached, queuing request (queued=%d)", len(self._waiters) + 1)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was handed over just as we were cancelled
                self._release_slot()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def _release_slot(self) -> None:
        if self._waiters:
            waiter = self._waiters.popleft()
            asyncio.get_running_loop().call_later(self._wake_delay, self._hand_over, waiter)
        else:
            self._slots = max(0, self._slots - 1)

    def _hand_over(self, waiter: asyncio.Future) -> None:
        if waiter.done():
            # Waiter gave up while the wake-up was pending; pass the slot on
            self._release_slot()
            return
        waiter.set_result(None)

    async def _wait_for_window(self) -> None:
        while True:
            now = self._clock()
            self._purge_history(now)

            if len(self._history) >= self.config.burst_limit:
                wait = self.config.burst_window - (now - self._history[0])
                if wait > 0:
                    logger.debug("Burst limit reached, waiting %.2fs", wait)
                    await asyncio.sleep(wait)
                    continue

            if self._last_request_time is not None:
                elapsed = now - self._last_request_time
                if elapsed < self.config.min_delay:
                    wait = self.config.min_delay - elapsed
                    logger.debug("Minimum delay not met, waiting %.2fs", wait)
                    await asyncio.sleep(wait)
                    continue
            return

    def _grant(self) -> None:
        now = self._clock()
        self._last_request_time = now
        self._active += 1
        self._history.append(now)
        self.last_used = now
        logger.debug("Request allowed: active=%d queued=%d recent=%d",
                     self._active, len(self._waiters), len(self._history))

    def _purge_history(self, now: float) -> None:
        cutoff = now - self.config.burst_window
        while self._history and self._history[0] <= cutoff:
            self._history.popleft()

    def stats(self) -> dict:
        self._purge_history(self._clock())
        return {
            "active_requests": self._active,
            "queue_length": len(self._waiters),
            "recent_requests": len(self._history),
            "config": asdict(self.config),
        }

    def update_config(self, **changes) -> None:
        self.config = replace(self.config, **changes)
        logger.info("Rate limiter configuration updated: %s", asdict(self.config))

    def reset(self) -> None:
        """Drop all state; queued callers fail with RuntimeError."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(RuntimeError("rate limiter was reset"))
        self._last_request_time = None
        self._active = 0
        self._slots = 0
        self._history.clear()
        logger.info("Rate limiter reset")


def _matches(domain: str, sites: Tuple[str, ...]) -> bool:
    return any(domain == site or domain.endswith("." + site) for site in sites)


def origin_of(domain: str) -> str:
    domain = (domain or "").strip().lower().rstrip(".")
    return domain[4:] if domain.startswith("www.") else domain


class DomainRateLimiter:
    """Lazily created per-origin limiters, evicted once idle for idle_ttl seconds."""

    def __init__(self, idle_ttl: Optional[float] = 3600.0, *,
                 clock: Callable[[], float] = time.monotonic,
                 wake_delay: float = WAKE_DELAY):
        self.idle_ttl = idle_ttl
        self._clock = clock
        self._wake_delay = wake_delay
        self._limiters: Dict[str, RequestRateLimiter] = {}

    @staticmethod
    def config_for(domain: str) -> RateLimiterConfig:
        domain = origin_of(domain)
        if _matches(domain, HIGH_TRAFFIC_SITES):
            return HIGH_TRAFFIC_CONFIG
        if _matches(domain, MEDIUM_TRAFFIC_SITES):
            return MEDIUM_TRAFFIC_CONFIG
        return DEFAULT_SITE_CONFIG

    def get_limiter(self, domain: str) -> RequestRateLimiter:
        origin = origin_of(domain)
        self.evict_idle()
        limiter = self._limiters.get(origin)
        if limiter is None:
            config = self.config_for(origin)
            limiter = RequestRateLimiter(config, clock=self._clock, wake_delay=self._wake_delay)
            self._limiters[origin] = limiter
            logger.info("Created rate limiter for domain %s: %s", origin, asdict(config))
        return limiter

    @asynccontextmanager
    async def admission(self, domain: str) -> AsyncIterator[RequestRateLimiter]:
        """Hold an admission slot for the origin for the duration of the block."""
        limiter = self.get_limiter(domain)
        await limiter.acquire()
        try:
            yield limiter
        finally:
            limiter.release()

    def evict_idle(self) -> int:
        if not self.idle_ttl:
            return 0
        now = self._clock()
        stale = [
            origin for origin, limiter in self._limiters.items()
            if limiter.is_idle and now - limiter.last_used > self.idle_ttl
        ]
        for origin in stale:
            del self._limiters[origin]
        if stale:
            logger.debug("Evicted %d idle rate limiters", len(stale))
        return len(stale)

    def __contains__(self, domain: str) -> bool:
        return origin_of(domain) in self._limiters

    def __len__(self) -> int:
        return len(self._limiters)

    def all_stats(self) -> Dict[str, dict]:
        return {origin: limiter.stats() for origin, limiter in self._limiters.items()}
