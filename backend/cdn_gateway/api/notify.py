"""Manual notification: process one object as if its change notification had arrived."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from cdn_gateway.api.schemas import NotifyRequest, NotifyResponse
from cdn_gateway.core.deps import get_pipeline, require_admin_token
from cdn_gateway.core.errors import (
    GatewayError,
    MissingBoundMetadataError,
    ObjectNotFoundError,
    TransientBackendError,
)
from cdn_gateway.core.metrics import record_processing_error
from cdn_gateway.services.ingestion import IngestionPipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ingest"])


@router.post("/notify", response_model=NotifyResponse, dependencies=[Depends(require_admin_token)])
def notify(body: NotifyRequest, pipeline: IngestionPipeline = Depends(get_pipeline)):
    # Sync handler: runs in the threadpool, storage and registration calls block
    try:
        result = pipeline.process_object(body.bucket, body.key)
    except ObjectNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except MissingBoundMetadataError as e:
        record_processing_error("missing_metadata")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    except TransientBackendError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message)
    except GatewayError as e:
        logger.error("manual notification failed for %s: %s", body.key, e.message)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return NotifyResponse(success=True, message="Notification processed", result=result)
