"""Fixed-window request limits per client address.

Counting is done by the ``limits`` library that backs slowapi: a window
opens with a client's first request and is replaced by a fresh one once it
elapses. The storage URI selects in-process memory or a shared backend.
"""

from __future__ import annotations

import logging
import math
import time

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter
from slowapi.util import get_remote_address

from bltnm_edge.errors import ApiError
from bltnm_edge.logging_config import request_context

logger = logging.getLogger(__name__)


class RateLimiter:
    """Allow ``max_requests`` per ``window_seconds`` for each identifier."""

    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: int = 60,
        storage_uri: str = "memory://",
    ) -> None:
        self.item = RateLimitItemPerSecond(max_requests, window_seconds)
        self.storage = storage_from_string(storage_uri)
        self.strategy = FixedWindowRateLimiter(self.storage)

    @property
    def max_requests(self) -> int:
        return self.item.amount

    def check(self, identifier: str) -> bool:
        """Count a request and return whether it is allowed."""
        return self.strategy.hit(self.item, identifier)

    def remaining_time(self, identifier: str) -> float:
        """Seconds until *identifier*'s window resets (0 if none is open)."""
        stats = self.strategy.get_window_stats(self.item, identifier)
        if stats.remaining >= self.item.amount:
            return 0.0
        return max(0.0, stats.reset_time - time.time())

    def reset(self) -> None:
        self.storage.reset()


async def rate_limit(request: Request) -> None:
    """FastAPI dependency rejecting clients over the configured limit."""
    limiter: RateLimiter = request.app.state.limiter
    identifier = get_remote_address(request)
    if not limiter.check(identifier):
        retry_after = max(1, math.ceil(limiter.remaining_time(identifier)))
        logger.warning("Rate limit exceeded", extra=request_context(request))
        raise ApiError(429, "RATE_LIMITED", headers={"Retry-After": str(retry_after)})
