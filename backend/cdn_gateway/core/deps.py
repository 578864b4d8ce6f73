"""FastAPI dependencies: ingestion pipeline handle, metrics and admin guards."""
import hmac

from fastapi import Header, HTTPException, Request, status

from cdn_gateway.core.config import get_settings
from cdn_gateway.services.ingestion import IngestionPipeline


def get_pipeline(request: Request) -> IngestionPipeline:
    """Pipeline attached to app.state at startup."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ingestion pipeline not initialized",
        )
    return pipeline


def require_metrics_access(
    x_metrics_secret: str | None = Header(None, alias="X-Metrics-Secret"),
) -> None:
    """Allow /metrics with a valid X-Metrics-Secret, or unguarded when no secret is configured."""
    s = get_settings()
    if s.metrics_secret:
        if not x_metrics_secret or not hmac.compare_digest(x_metrics_secret, s.metrics_secret):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing X-Metrics-Secret",
            )


def require_admin_token(
    x_admin_token: str | None = Header(None, alias="X-Admin-Token"),
) -> None:
    """Manual notifications trigger registrations, so they need the admin token when one is configured."""
    s = get_settings()
    if s.admin_token:
        if not x_admin_token or not hmac.compare_digest(x_admin_token, s.admin_token):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing X-Admin-Token",
            )
