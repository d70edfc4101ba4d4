"""
Correlation ID middleware for request tracing.

Accepts X-Correlation-ID from the client or generates one, keeps it in
contextvars for the rest of the request, and echoes it back. Job status polls
and health checks are only logged when they fail.
"""
import time
import uuid
import contextvars

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from studygen.utils.logger import logger
from studygen.utils.metrics import inc, observe

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="")
request_user_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_user_id", default="")

# Logged only on error
QUIET_PATHS = frozenset({"/health", "/metrics"})


def get_correlation_id() -> str:
    return correlation_id_var.get("")


def get_request_user_id() -> str:
    return request_user_id_var.get("")


def _is_status_poll(path: str) -> bool:
    return path.startswith("/api/study/jobs/") and path.endswith("/status")


class CorrelationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        correlation_id_var.set(cid)
        user_id = request.headers.get("x-user-id", "")
        request_user_id_var.set(user_id)

        path = request.url.path
        quiet = path in QUIET_PATHS or _is_status_poll(path)
        context = {
            "correlation_id": cid,
            "user_id": user_id,
            "method": request.method,
            "path": path,
            "job_id": request.headers.get("x-job-id") or request.query_params.get("jobId") or "",
        }

        start = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request.failed",
                extra={
                    **context,
                    "duration_ms": round((time.monotonic() - start) * 1000),
                    "error": str(exc)[:200],
                    "error_type": type(exc).__name__,
                },
            )
            inc("http.5xx")
            raise

        duration_ms = round((time.monotonic() - start) * 1000)
        status = response.status_code
        inc(f"http.{status // 100}xx")
        observe("http.duration_ms", duration_ms)

        if not quiet or status >= 400:
            log_fn = logger.warning if status >= 400 else logger.info
            log_fn("request.completed", extra={**context, "status": status, "duration_ms": duration_ms})

        response.headers["X-Correlation-ID"] = cid
        return response
