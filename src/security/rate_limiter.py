"""Redis-backed fixed-window burst throttle for submission endpoints.

Uses INCR + EXPIRE for simple, performant rate limiting. Independent of the
per-letter request limit: this one only caps how fast a single client (by
hashed IP, or session when no IP is known) can hit the submit endpoints.

Usage:
    from src.security.rate_limiter import rate_limiter

    allowed, retry_after = await rate_limiter.check("throttle:submit:<hash>", limit=10, window=60)
"""

from __future__ import annotations

import logging

from src.admin.events import emit_safely
from src.config import settings
from src.db.engine import redis_client
from src.schemas.events import EventType, SystemEvent
from src.workflow.errors import SubmissionThrottled

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window rate limiter backed by Redis INCR + EXPIRE."""

    def __init__(self, redis: object) -> None:
        self._redis = redis

    async def check(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        """Check if a request is within the rate limit.

        Args:
            key: Redis key (e.g. "throttle:submit:{hashed_ip}").
            limit: Max requests allowed in the window.
            window: Window size in seconds.

        Returns:
            (allowed, retry_after): allowed is True if under limit,
            retry_after is seconds until window resets (0 if allowed).
        """
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, window)

            if count > limit:
                ttl = await self._redis.ttl(key)
                retry_after = max(ttl, 1)
                return False, retry_after

            return True, 0
        except Exception:
            logger.exception("Rate limiter Redis error for key %s", key)
            # Fail open if Redis is down
            return True, 0

    async def enforce_submission(self, client_key: str) -> None:
        """Raise SubmissionThrottled when ``client_key`` exceeds the submission burst limit."""
        allowed, retry_after = await self.check(
            f"throttle:submit:{client_key}",
            limit=settings.throttle.submission_limit,
            window=settings.throttle.submission_window,
        )
        if not allowed:
            logger.info("Submission throttled for client %s (retry in %ds)", client_key[:12], retry_after)
            await emit_safely(SystemEvent(
                event_type=EventType.SUBMISSION_THROTTLED,
                data={"client": client_key[:12], "retry_after": retry_after},
                source_module="security.rate_limiter",
            ))
            raise SubmissionThrottled(retry_after)


# Module-level singleton
rate_limiter = RateLimiter(redis_client)
