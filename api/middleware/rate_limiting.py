from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from channels.rate_limiter import SlidingWindowRateLimiter
from settings import SETTINGS

EXEMPT_PATHS = {"/health"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-client-IP request cap over a 60 second sliding window."""

    def __init__(self, app, requests_per_minute: int | None = None) -> None:
        super().__init__(app)
        self.limiter = SlidingWindowRateLimiter(requests_per_minute or SETTINGS.rate_limit_per_minute, 60)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)
        ip = request.client.host if request.client else "unknown"
        if not await self.limiter.hit(ip):
            return JSONResponse({"detail": "rate_limited"}, status_code=429)
        return await call_next(request)
