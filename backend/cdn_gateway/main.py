"""Ingestion worker: FastAPI app for health, readiness, metrics and manual notify; the poll loop runs in a thread."""
import json
import logging
import threading
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from cdn_gateway.api.notify import router as notify_router
from cdn_gateway.api.schemas import HealthResponse
from cdn_gateway.core.config import Settings, get_settings
from cdn_gateway.core.deps import require_metrics_access
from cdn_gateway.core.metrics import get_metrics
from cdn_gateway.core.request_logging import RequestLoggingMiddleware
from cdn_gateway.services.factory import build_pipeline

logger = logging.getLogger("cdn_gateway.worker")

# Seconds to wait for the poll loop after shutdown is signalled (one long-poll plus slack)
_SHUTDOWN_GRACE_SECONDS = 30.0


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(settings: Settings) -> None:
    root = logging.getLogger("cdn_gateway")
    for h in root.handlers[:]:
        root.removeHandler(h)
    h = logging.StreamHandler()
    if settings.log_json:
        h.setFormatter(_JsonFormatter())
    else:
        h.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(h)
    root.setLevel(settings.log_level.upper())
    root.propagate = False


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    stop_event = threading.Event()
    worker: threading.Thread | None = None
    if settings.ingest_enabled:
        # ConfigurationError propagates and aborts startup
        pipeline = build_pipeline(settings)
        app.state.pipeline = pipeline
        worker = threading.Thread(target=pipeline.run, args=(stop_event,), name="ingestion-loop", daemon=True)
        worker.start()
        logger.info("Starting event handler")
    else:
        logger.warning("Ingestion disabled (INGEST_ENABLED=0); serving health endpoints only")
    try:
        yield
    finally:
        logger.info("Shutting down gracefully")
        stop_event.set()
        if worker is not None:
            worker.join(timeout=_SHUTDOWN_GRACE_SECONDS)


app = FastAPI(title=get_settings().app_name, lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.include_router(notify_router)


@app.get("/health", response_model=HealthResponse)
async def health():
    """Liveness: no dependencies."""
    return HealthResponse(status="healthy")


@app.get("/ready", response_model=HealthResponse)
async def ready(request: Request):
    """Readiness: pipeline wired and the notification queue reachable on recent polls."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None or not pipeline.healthy:
        return JSONResponse(
            status_code=503,
            content=HealthResponse(status="unavailable").model_dump(),
        )
    return HealthResponse(status="ready")


@app.get("/metrics", response_class=Response)
async def metrics(_: None = Depends(require_metrics_access)):
    """Prometheus metrics. Guard with METRICS_SECRET + X-Metrics-Secret header in prod."""
    body, content_type = get_metrics()
    return Response(content=body, media_type=content_type)
