import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

# Expired entries are swept at most this often (seconds)
CLEANUP_INTERVAL = 5 * 60


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float
    burst_count: int
    burst_reset_time: float


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float
    retry_after: Optional[int] = None


class RateLimiter:
    """
    Per-client request limiter with an hourly window and a shorter burst
    window. State is process-local and lost on restart.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._store: Dict[str, RateLimitEntry] = {}
        self._lock = asyncio.Lock()
        self._last_cleanup = clock()

    def _get_key(self, identifier: str) -> str:
        return f"rate_limit:{identifier}"

    async def check_limit(
        self,
        identifier: str,
        limit: int = 60,
        window: float = 60 * 60,
        burst_limit: int = 10,
        burst_window: float = 60,
    ) -> RateLimitResult:
        """
        Counts one request for `identifier` if it is within both windows.
        The burst window is checked first.
        """
        key = self._get_key(identifier)

        async with self._lock:
            now = self._clock()
            if now - self._last_cleanup >= CLEANUP_INTERVAL:
                self._cleanup_locked(now)

            entry = self._store.get(key)
            if entry is None:
                entry = RateLimitEntry(
                    count=0,
                    reset_time=now + window,
                    burst_count=0,
                    burst_reset_time=now + burst_window,
                )
                self._store[key] = entry

            # Reset counters if windows have expired
            if now >= entry.reset_time:
                entry.count = 0
                entry.reset_time = now + window
            if now >= entry.burst_reset_time:
                entry.burst_count = 0
                entry.burst_reset_time = now + burst_window

            if entry.burst_count >= burst_limit:
                logger.debug(f"Burst limit hit for {identifier}: {entry.burst_count}/{burst_limit}")
                return RateLimitResult(
                    allowed=False,
                    remaining=max(0, burst_limit - entry.burst_count),
                    reset_time=entry.burst_reset_time,
                    retry_after=math.ceil(entry.burst_reset_time - now),
                )

            if entry.count >= limit:
                logger.debug(f"Hourly limit hit for {identifier}: {entry.count}/{limit}")
                return RateLimitResult(
                    allowed=False,
                    remaining=max(0, limit - entry.count),
                    reset_time=entry.reset_time,
                    retry_after=math.ceil(entry.reset_time - now),
                )

            entry.count += 1
            entry.burst_count += 1
            return RateLimitResult(
                allowed=True,
                remaining=max(0, limit - entry.count),
                reset_time=entry.reset_time,
            )

    def _cleanup_locked(self, now: float) -> int:
        expired = [
            key
            for key, entry in self._store.items()
            if entry.reset_time < now and entry.burst_reset_time < now
        ]
        for key in expired:
            del self._store[key]
        self._last_cleanup = now
        if expired:
            logger.debug(f"Dropped {len(expired)} expired rate limit entries")
        return len(expired)

    async def cleanup(self) -> int:
        """Drops entries whose windows have both expired. Returns how many were dropped."""
        async with self._lock:
            return self._cleanup_locked(self._clock())

    def __len__(self) -> int:
        return len(self._store)


def client_identifier(headers: Mapping[str, str], fallback: Optional[str] = None) -> str:
    """First X-Forwarded-For entry, then X-Real-IP, then the socket address."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return fallback or "unknown"
