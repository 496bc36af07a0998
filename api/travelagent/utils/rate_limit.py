"""
Fixed-window rate limiting backed by Redis
"""
from dataclasses import dataclass
import logging
import time

from fastapi import HTTPException, Request, status

from travelagent.config import settings

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset: int  # epoch seconds when the window ends


class RateLimiter:
    """
    Counts requests per identifier in fixed windows.

    Fails open: if Redis errors, the request is allowed.
    """

    def __init__(
        self,
        client,
        limit: int = settings.RATE_LIMIT_REQUESTS,
        window: int = settings.RATE_LIMIT_WINDOW,
        prefix: str = "rate-limit",
    ):
        self.client = client
        self.limit = limit
        self.window = window
        self.prefix = prefix

    async def hit(self, identifier: str) -> RateLimitResult:
        window_index = int(time.time()) // self.window
        key = f"{self.prefix}:{identifier}:{window_index}"
        reset = (window_index + 1) * self.window

        try:
            count = await self.client.incr(key)
            if count == 1:
                await self.client.expire(key, self.window)
        except Exception as e:
            logger.warning(f"Rate limit check failed for {identifier}: {e}")
            return RateLimitResult(True, self.limit, self.limit, reset)

        return RateLimitResult(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset=reset,
        )


def client_ip(request: Request) -> str:
    """First address in X-Forwarded-For, else the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def rate_limited(scope: str):
    """
    Dependency factory enforcing the limiter stored on app.state

    Usage: Depends(rate_limited("bookings:create"))
    """
    async def dependency(request: Request):
        limiter: RateLimiter = request.app.state.rate_limiter
        result = await limiter.hit(f"{scope}:{client_ip(request)}")
        if not result.allowed:
            retry_after = max(1, result.reset - int(time.time()))
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
                headers={"Retry-After": str(retry_after)},
            )
        return result
    return dependency
