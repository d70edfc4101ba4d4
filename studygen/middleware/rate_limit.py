"""
Redis-backed fixed window rate limiter for the generation endpoints.

Only requests that start expensive work (upload init, upload completion,
topic generation) are counted. Falls back to no-op when Redis is unavailable;
the slowapi decorators on the study routes still apply per IP.
"""

import logging
import time

from redis.exceptions import RedisError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from studygen.services.redis_client import get_redis

_log = logging.getLogger(__name__)

# Generation requests per user per window
GENERATION_LIMIT = 20
WINDOW_SECONDS = 3600

KEY_PREFIX = "studygen:rl"


def is_generation_request(request: Request) -> bool:
    path = request.url.path
    if request.method == "POST" and path in ("/api/study/generate", "/api/study/upload/init"):
        return True
    return request.method == "PUT" and path.startswith("/api/study/upload/")


class RedisRateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limit: int = GENERATION_LIMIT, window_seconds: int = WINDOW_SECONDS):
        super().__init__(app)
        self.limit = limit
        self.window_seconds = window_seconds

    async def dispatch(self, request: Request, call_next):
        if not is_generation_request(request):
            return await call_next(request)

        r = get_redis()
        if r is None:
            return await call_next(request)

        identity = request.headers.get("x-user-id") or (request.client.host if request.client else "unknown")
        now = int(time.time())
        window = now // self.window_seconds
        window_key = f"{KEY_PREFIX}:{identity}:{window}"

        try:
            pipe = r.pipeline(transaction=True)
            pipe.incr(window_key)
            pipe.expire(window_key, self.window_seconds + 1)
            current_count = (await pipe.execute())[0]
        except (RedisError, OSError) as exc:
            _log.debug(f"[rate_limit] Redis error ({exc}); skipping rate limit")
            return await call_next(request)

        reset_at = str((window + 1) * self.window_seconds)
        if current_count > self.limit:
            return JSONResponse(
                status_code=429,
                content={"detail": "Generation limit reached. Try again later."},
                headers={
                    "X-RateLimit-Limit": str(self.limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": reset_at,
                    "Retry-After": str((window + 1) * self.window_seconds - now),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.limit - current_count))
        response.headers["X-RateLimit-Reset"] = reset_at
        return response
