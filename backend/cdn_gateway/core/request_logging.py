"""Access log for the worker app. Probe and scrape traffic is neither logged nor counted."""
import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from cdn_gateway.core.config import get_settings
from cdn_gateway.core.logging_redaction import redact_for_log
from cdn_gateway.core.metrics import record_request

logger = logging.getLogger("cdn_gateway.request")

REQUEST_ID_HEADER = "X-Request-ID"
_UNLOGGED_PATHS = frozenset({"/health", "/ready", "/metrics"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id (reusing the caller's X-Request-ID) and emit one access line."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started
        response.headers[REQUEST_ID_HEADER] = request_id

        path = request.url.path
        if path in _UNLOGGED_PATHS:
            return response
        record_request(request.method, path, response.status_code, elapsed)
        fields = redact_for_log({
            "request_id": request_id,
            "method": request.method,
            "path": path,
            "query": str(request.url.query),
            "status_code": response.status_code,
            "latency_ms": round(elapsed * 1000, 2),
        })
        if get_settings().log_json:
            logger.info(json.dumps({"event": "request", **fields}))
        else:
            logger.info(
                "%s %s -> %d in %.1fms [%s]",
                fields["method"], fields["path"], fields["status_code"], fields["latency_ms"], request_id,
            )
        return response
