"""Upload grants: validate the request, compute the expiry, delegate signing to the active backend."""
from __future__ import annotations

import logging
import time
from typing import Callable

from cdn_gateway.core.metrics import record_upload_grant
from cdn_gateway.services.storage.base import FORM_STRATEGY, HEADER_STRATEGY, StorageBackend, UploadGrant

logger = logging.getLogger(__name__)

DEV_UPLOAD_URL = "http://localhost:8080/upload"


def validate_grant_request(size: int, retention_minutes: int, object_identifier: str, uploader_identity_key: str) -> None:
    """Raise ValueError if invalid."""
    if size <= 0:
        raise ValueError("size must be greater than 0")
    if retention_minutes <= 0:
        raise ValueError("retention_minutes must be greater than 0")
    if not object_identifier or "/" in object_identifier:
        raise ValueError("object_identifier must be a non-empty single path segment")
    if not uploader_identity_key or not uploader_identity_key.strip():
        raise ValueError("uploader_identity_key is required")


class UploadGrantIssuer:
    """Stateless per call; holds only the backend handle."""

    def __init__(
        self,
        storage: StorageBackend | None,
        clock: Callable[[], float] = time.time,
        development: bool = False,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._development = development

    def expiry_time_for(self, retention_minutes: int) -> int:
        """Seconds since the epoch at which the retention period ends (before the grace buffer)."""
        return int(round(self._clock())) + retention_minutes * 60

    def issue(
        self,
        size: int,
        retention_minutes: int,
        object_identifier: str,
        uploader_identity_key: str,
    ) -> UploadGrant:
        validate_grant_request(size, retention_minutes, object_identifier, uploader_identity_key)
        if self._development:
            logger.info("[DEV] Returning pretend upload URL %s", DEV_UPLOAD_URL)
            return UploadGrant(upload_url=DEV_UPLOAD_URL, required_headers={})
        if self._storage is None:
            raise RuntimeError("UploadGrantIssuer requires a storage backend outside development mode")
        expiry_time = self.expiry_time_for(retention_minutes)
        grant = self._storage.issue_upload_grant(size, expiry_time, object_identifier, uploader_identity_key)
        strategy = FORM_STRATEGY if grant.is_form_upload else HEADER_STRATEGY
        record_upload_grant(self._storage.name(), strategy)
        logger.info(
            "upload grant issued provider=%s object_identifier=%s size=%d expiry_time=%d strategy=%s",
            self._storage.name(), object_identifier, size, expiry_time, strategy,
        )
        return grant
