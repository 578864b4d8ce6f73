"""Advertise endpoint client: POST {hosting_domain}/advertise once an object has been hashed.

The receiver must treat a repeated pointer + object identifier as an overwrite, since notifications
are delivered at least once.
"""
from __future__ import annotations

import logging
import time
from typing import Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field

from cdn_gateway.core.config import Settings
from cdn_gateway.core.errors import ConfigurationError, RegistrationError
from cdn_gateway.core.logging_redaction import redact_for_log
from cdn_gateway.core.metrics import record_registration_latency

logger = logging.getLogger(__name__)


class RegistrationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    admin_token: str = Field(alias="adminToken")
    uhrp_url: str = Field(alias="uhrpUrl")
    uploader_identity_key: str = Field(alias="uploaderIdentityKey")
    object_identifier: str = Field(alias="objectIdentifier")
    # seconds since the epoch
    expiry_time: int = Field(alias="expiryTime")
    file_size: int = Field(alias="fileSize")


@runtime_checkable
class Registrar(Protocol):
    def register(
        self,
        uhrp_url: str,
        uploader_identity_key: str,
        object_identifier: str,
        expiry_time: int,
        file_size: int,
    ) -> None: ...


class AdvertisementRegistrar:
    """httpx client for the advertise endpoint. Any non-2xx answer raises RegistrationError."""

    def __init__(
        self,
        hosting_domain: str,
        admin_token: str,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not hosting_domain:
            raise ConfigurationError("hosting_domain is required for registration")
        if not admin_token:
            raise ConfigurationError("admin_token is required for registration")
        self._admin_token = admin_token
        self._client = client or httpx.Client(
            base_url=hosting_domain.rstrip("/"),
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdvertisementRegistrar":
        return cls(
            hosting_domain=settings.hosting_domain or "",
            admin_token=settings.admin_token or "",
            timeout=settings.registration_timeout_seconds,
        )

    def register(
        self,
        uhrp_url: str,
        uploader_identity_key: str,
        object_identifier: str,
        expiry_time: int,
        file_size: int,
    ) -> None:
        body = RegistrationRequest(
            admin_token=self._admin_token,
            uhrp_url=uhrp_url,
            uploader_identity_key=uploader_identity_key,
            object_identifier=object_identifier,
            expiry_time=expiry_time,
            file_size=file_size,
        ).model_dump(by_alias=True)
        logger.info("sending advertisement %s", redact_for_log(body))
        start = time.perf_counter()
        try:
            r = self._client.post("/advertise", json=body)
        except httpx.HTTPError as e:
            raise RegistrationError(f"Advertise call failed for {object_identifier}: {e}") from e
        finally:
            record_registration_latency(time.perf_counter() - start)
        if r.is_error:
            raise RegistrationError(
                f"Advertise rejected {object_identifier} with {r.status_code}",
                {"status_code": str(r.status_code), "body": r.text[:500]},
            )
        logger.info("advertised object_identifier=%s uhrp_url=%s", object_identifier, uhrp_url)

    def close(self) -> None:
        self._client.close()
