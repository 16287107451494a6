# app/middleware/metrics.py
import logging
import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000.0


def new_metrics() -> dict:
    return {
        "requests": 0,
        "errors": 0,
        "total_response_ms": 0.0,
    }


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Collects in-process request metrics:
      - total requests
      - responses with status >= 400
      - total response time (ms)
    NOTE: do NOT touch app.state in __init__; it may not be available yet while middleware stack builds.
    """

    async def dispatch(self, request: Request, call_next):
        metrics = getattr(request.app.state, "metrics", None)
        if metrics is None:
            # first request before startup ran
            metrics = request.app.state.metrics = new_metrics()

        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        metrics["requests"] += 1
        metrics["total_response_ms"] += elapsed_ms
        if response.status_code >= 400:
            metrics["errors"] += 1
        if elapsed_ms > SLOW_REQUEST_MS:
            logger.warning("Slow request %s %s took %.0f ms", request.method, request.url.path, elapsed_ms)

        return response
