"""Storage backend factory: aws (S3) or gcs. Each SDK is imported only when its backend is selected."""
from cdn_gateway.core.config import Settings, get_settings
from cdn_gateway.core.errors import ConfigurationError
from cdn_gateway.services.storage.base import StorageBackend


def get_storage(settings: Settings | None = None) -> StorageBackend:
    """Build the configured storage backend. Construct once at startup and inject the handle."""
    settings = settings or get_settings()
    provider = (settings.storage_provider or "").strip().lower()
    if provider == "aws":
        from cdn_gateway.services.storage.s3 import S3Storage
        return S3Storage.from_settings(settings)
    if provider == "gcs":
        from cdn_gateway.services.storage.gcs import GCSStorage
        return GCSStorage.from_settings(settings)
    raise ConfigurationError(
        f"Unsupported storage provider: {settings.storage_provider}. Supported values: 'gcs', 'aws'"
    )
