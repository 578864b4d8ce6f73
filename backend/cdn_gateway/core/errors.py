"""Gateway exception hierarchy: storage, advertisement, ingestion and config failures."""

from __future__ import annotations


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    def __init__(self, message: str, details: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(GatewayError):
    """Raised when a bucket, region, queue or endpoint is missing. Fatal at startup."""


class StorageError(GatewayError):
    """Base class for normalized backend errors."""


class ObjectNotFoundError(StorageError, FileNotFoundError):
    """Raised when no object exists at a storage key."""


class SignatureOrPolicyRejectedError(StorageError):
    """Raised when headers or form fields did not match the issued grant."""


class TransientBackendError(StorageError):
    """Network failure or throttling. Safe to retry with backoff."""


class AdvertisementError(GatewayError):
    """Base class for advertisement lookup failures."""


class NoAdvertisementFoundError(AdvertisementError):
    """Raised when no candidate record carries both an object identifier and an expiry."""


class AdvertisementExpiredError(AdvertisementError):
    """Raised when the freshest advertisement has already lapsed."""


class IngestionError(GatewayError):
    """Base class for per-object ingestion failures."""


class MissingBoundMetadataError(IngestionError):
    """Ingested object lacks the uploader identity key. Not retryable."""


class RegistrationError(IngestionError):
    """Raised when the advertise endpoint rejects or cannot be reached."""
