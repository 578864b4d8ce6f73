"""Wiring: build the storage handle once and inject it into the issuer, resolver and pipeline."""
from __future__ import annotations

from dataclasses import dataclass

from cdn_gateway.core.config import Settings, get_settings
from cdn_gateway.services.advertisements import AdvertisementStore, WalletAdvertisementStore
from cdn_gateway.services.ingestion import IngestionPipeline
from cdn_gateway.services.notifications import SQSNotificationQueue
from cdn_gateway.services.registration import AdvertisementRegistrar
from cdn_gateway.services.resolver import AdvertisementResolver
from cdn_gateway.services.storage import get_storage
from cdn_gateway.services.storage.base import StorageBackend, storage_key_for
from cdn_gateway.services.upload_grants import UploadGrantIssuer


@dataclass(frozen=True)
class Gateway:
    """Request-path components. All share one read-only storage handle."""

    settings: Settings
    storage: StorageBackend
    issuer: UploadGrantIssuer
    resolver: AdvertisementResolver

    def download_grant(self, object_identifier: str) -> str:
        """Time-limited read URL for cdn/{object_identifier}."""
        return self.storage.issue_download_grant(
            storage_key_for(object_identifier), self.settings.download_grant_ttl_seconds,
        )


def build_gateway(
    settings: Settings | None = None,
    storage: StorageBackend | None = None,
    advertisements: AdvertisementStore | None = None,
) -> Gateway:
    settings = settings or get_settings()
    storage = storage or get_storage(settings)
    advertisements = advertisements or WalletAdvertisementStore.from_settings(settings)
    return Gateway(
        settings=settings,
        storage=storage,
        issuer=UploadGrantIssuer(storage, development=settings.environment == "development"),
        resolver=AdvertisementResolver(storage, advertisements, default_limit=settings.resolver_default_limit),
    )


def build_pipeline(settings: Settings | None = None, storage: StorageBackend | None = None) -> IngestionPipeline:
    settings = settings or get_settings()
    storage = storage or get_storage(settings)
    return IngestionPipeline.from_settings(
        settings,
        storage,
        SQSNotificationQueue.from_settings(settings),
        AdvertisementRegistrar.from_settings(settings),
    )
