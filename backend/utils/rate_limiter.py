"""Rate limiting for signing and download endpoints.

Fixed-window counters: the first hit in a window creates the counter with a
TTL equal to the window, and the window resets when that entry expires. Bursts
straddling a window boundary are accepted.

When the backing store is missing or failing the limiter fails OPEN so the
contract workflow stays available.
"""
from datetime import datetime, timedelta, timezone
import logging

from pydantic import BaseModel

logger = logging.getLogger(__name__)

RATE_KEY_PREFIX = "rate:"


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    reset_at: datetime

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets (at least 1 when blocked)."""
        seconds = int((self.reset_at - datetime.now(timezone.utc)).total_seconds())
        return max(seconds, 1) if not self.allowed else max(seconds, 0)


class RateLimiter:
    def __init__(self, store=None, enabled: bool = True):
        self.store = store
        self.enabled = enabled

    async def check_limit(
        self,
        key: str,
        limit: int,
        window_seconds: int,
    ) -> RateLimitResult:
        """
        Count one hit against `key` and report whether it is within `limit`.

        Returns:
            RateLimitResult(allowed, remaining, reset_at)
        """
        now = datetime.now(timezone.utc)
        fallback = RateLimitResult(
            allowed=True,
            remaining=limit,
            reset_at=now + timedelta(seconds=window_seconds),
        )

        if not self.enabled or self.store is None:
            return fallback

        try:
            count, reset_at = await self.store.incr(f"{RATE_KEY_PREFIX}{key}", window_seconds)
        except Exception as e:
            logger.warning(f"Rate limiter store unavailable, allowing request for {key}: {e}")
            return fallback

        if count > limit:
            logger.info(f"Rate limit exceeded for {key}: {count}/{limit}")
            return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)

        return RateLimitResult(allowed=True, remaining=limit - count, reset_at=reset_at)
