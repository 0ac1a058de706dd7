from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp

from walletauth.core.logging import log_event
from walletauth.core.rate_limit import MemoryFixedWindowLimiter


class RateLimitIPMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, limiter: MemoryFixedWindowLimiter, enabled: bool = True):
        super().__init__(app)
        self.limiter = limiter
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next):
        if not self.enabled:
            return await call_next(request)

        ip = request.client.host if request.client else "unknown"
        res = self.limiter.check(f"ip:{ip}")

        headers = {
            "X-RateLimit-Limit": str(res.limit),
            "X-RateLimit-Remaining": str(res.remaining),
            "X-RateLimit-Reset": str(res.reset_after_sec),
        }

        if not res.allowed:
            log_event("rate_limit.exceeded", ip=ip, path=request.url.path)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Too Many Requests",
                    "message": f"Rate limit exceeded. Try again in {res.reset_after_sec} seconds.",
                    "retryAfter": res.reset_after_sec,
                },
                headers={**headers, "Retry-After": str(res.reset_after_sec)},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
