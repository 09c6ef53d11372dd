"""
Rate Limiter
============

Keeps people from hammering the endpoints that send email or touch Dropbox
(SMTP test, Dropbox connection test).

HOW IT WORKS:
------------
Every (client IP, endpoint) pair gets a list of recent request times.

    1. Still blocked from last time?       -> 429, Retry-After = time left
    2. Drop request times older than the window, add this one
    3. More than max_requests in the window? -> block for block_seconds, 429
    4. Otherwise let it through

IPs are stored as SHA-256 hashes, never in the clear.

Author: ApiAlly Team
"""

import hashlib
import logging
import time
from dataclasses import dataclass, field
from threading import Lock
from typing import Optional

logger = logging.getLogger(__name__)


# Keys untouched for this long are forgotten by cleanup()
IDLE_KEY_SECONDS = 2 * 24 * 3600


@dataclass
class RateLimitResult:
    """Outcome of one check, plus the headers to send back."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: Optional[int] = None

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


@dataclass
class _Bucket:
    requests: list[float] = field(default_factory=list)
    blocked_until: float = 0.0
    last_seen: float = 0.0


class RateLimiter:
    """
    Sliding-window limiter with a penalty block.

    HOW TO USE:
    ----------
    limiter = RateLimiter(max_requests=5, window_seconds=3600, block_seconds=3600)
    result = limiter.check("203.0.113.9", "email_test")
    if not result.allowed:
        ...  # 429 with result.headers()
    """

    def __init__(self, max_requests: int = 5, window_seconds: int = 3600, block_seconds: int = 3600):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.block_seconds = block_seconds
        self._buckets: dict[str, _Bucket] = {}
        self._lock = Lock()

    @staticmethod
    def make_key(ip: str, endpoint: str) -> str:
        ip_hash = hashlib.sha256(ip.encode("utf-8")).hexdigest()
        return f"{ip_hash}_{endpoint}"

    def check(self, ip: str, endpoint: str, now: Optional[float] = None) -> RateLimitResult:
        """Record a request and say whether it may proceed."""
        now = time.time() if now is None else now
        key = self.make_key(ip, endpoint)

        with self._lock:
            bucket = self._buckets.setdefault(key, _Bucket())
            bucket.last_seen = now

            if bucket.blocked_until > now:
                return RateLimitResult(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_at=int(bucket.blocked_until),
                    retry_after=int(bucket.blocked_until - now),
                )

            window_start = now - self.window_seconds
            bucket.requests = [t for t in bucket.requests if t >= window_start]
            bucket.requests.append(now)
            count = len(bucket.requests)

            if count > self.max_requests:
                bucket.blocked_until = now + self.block_seconds
                logger.warning(f"Rate limit exceeded on {endpoint} for IP {ip[:7]}...")
                return RateLimitResult(
                    allowed=False,
                    limit=self.max_requests,
                    remaining=0,
                    reset_at=int(bucket.blocked_until),
                    retry_after=self.block_seconds,
                )

            return RateLimitResult(
                allowed=True,
                limit=self.max_requests,
                remaining=max(0, self.max_requests - count),
                reset_at=int(now + self.window_seconds),
            )

    def cleanup(self, now: Optional[float] = None) -> int:
        """Forget keys idle for more than two days. Returns how many were dropped."""
        now = time.time() if now is None else now
        with self._lock:
            stale = [
                key for key, bucket in self._buckets.items()
                if bucket.last_seen < now - IDLE_KEY_SECONDS and bucket.blocked_until <= now
            ]
            for key in stale:
                del self._buckets[key]
        if stale:
            logger.debug(f"Rate limiter dropped {len(stale)} idle keys")
        return len(stale)

    def __len__(self) -> int:
        return len(self._buckets)
