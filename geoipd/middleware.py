import time
import uuid
import logging
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from .logging_config import trace_id_var
from .metrics import prometheus_metrics

logger = logging.getLogger("geoipd.http")

EXCLUDE_PATHS = ("/healthz", "/metrics/prometheus")


class TracingMiddleware(BaseHTTPMiddleware):
    """Request tracing and structured access logging"""

    def __init__(self, app: ASGIApp, exclude_paths=EXCLUDE_PATHS):
        super().__init__(app)
        self.exclude_paths = set(exclude_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = trace_id_var.set(trace_id)
        client_ip = request.client.host if request.client else "unknown"
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            latency_ms = round((time.time() - start_time) * 1000, 2)
            logger.error(f"Request failed: {e}", extra={
                "method": request.method,
                "path": request.url.path,
                "status": 500,
                "latency_ms": latency_ms,
                "client_ip": client_ip,
                "trace_id": trace_id,
            })
            prometheus_metrics.increment_requests(500)
            raise
        else:
            latency_ms = round((time.time() - start_time) * 1000, 2)
            prometheus_metrics.increment_requests(response.status_code)
            self._log_request(request.method, request.url.path, response.status_code,
                              latency_ms, client_ip, trace_id)
            response.headers["X-Request-ID"] = trace_id
            return response
        finally:
            trace_id_var.reset(token)

    def _log_request(self, method: str, path: str, status: int, latency_ms: float,
                     client_ip: str, trace_id: str):
        if path in self.exclude_paths:
            return

        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(level, "HTTP Request", extra={
            "method": method,
            "path": path,
            "status": status,
            "latency_ms": latency_ms,
            "client_ip": client_ip,
            "trace_id": trace_id,
        })
