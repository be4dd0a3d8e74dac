"""Sliding-window rate limiting keyed by caller identity."""
import math
import threading
import time
from collections import OrderedDict, deque
from typing import Callable, Deque, Optional

from fastapi import Depends, HTTPException, Request, status

from tasksync.config import SETTINGS
from tasksync.middleware.auth import CurrentUser, get_current_user
from tasksync.utils.logger import get_logger

logger = get_logger("tasksync.rate_limit")


class SlidingWindowRateLimiter:
    """Allow at most ``limit`` hits per identity within ``window_seconds``.

    The store is bounded: identities whose window has emptied are dropped,
    and beyond ``max_keys`` the least recently seen identity is evicted.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit < 1 or window_seconds <= 0 or max_keys < 1:
            raise ValueError("limit, window_seconds and max_keys must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self.clock = clock
        self._hits: "OrderedDict[str, Deque[float]]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)

    def hit(self, identity: str) -> Optional[float]:
        """Record a request.

        Returns:
            None when allowed, otherwise the seconds until the next slot frees
        """
        now = self.clock()
        cutoff = now - self.window_seconds
        with self._lock:
            self._prune(cutoff)
            hits = self._hits.get(identity)
            if hits is None:
                hits = deque()
                self._hits[identity] = hits
            self._hits.move_to_end(identity)

            if len(hits) >= self.limit:
                return max(hits[0] + self.window_seconds - now, 0.0)

            hits.append(now)
            while len(self._hits) > self.max_keys:
                self._hits.popitem(last=False)
            return None

    def _prune(self, cutoff: float) -> None:
        for identity in list(self._hits):
            hits = self._hits[identity]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if not hits:
                del self._hits[identity]


def build_rate_limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(
        limit=SETTINGS.rate_limit_requests,
        window_seconds=SETTINGS.rate_limit_window_seconds,
        max_keys=SETTINGS.rate_limit_max_keys,
    )


async def enforce_rate_limit(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
) -> None:
    """Reject the request with 429 once the caller's window is full."""
    limiter: SlidingWindowRateLimiter = request.app.state.rate_limiter
    retry_after = limiter.hit(current_user.user_id)
    if retry_after is None:
        return
    logger.warning("Rate limit exceeded", user_id=current_user.user_id, path=request.url.path)
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail="Too many requests, please try again later",
        headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
    )
