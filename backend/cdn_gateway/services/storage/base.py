"""Storage backend interface: upload/download grants, metadata, listing, streaming reads, metadata updates.

Implementations: S3 (copy-based metadata updates) and GCS (in-place). Consumers depend only on
StorageBackend and never branch on the backend name.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Mapping

from pydantic import BaseModel, ConfigDict, Field

from cdn_gateway.core.errors import ConfigurationError, ObjectNotFoundError
from cdn_gateway.services.storage.metadata import format_timestamp, merge_metadata, normalize_metadata_patch

CDN_PREFIX = "cdn/"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Bound custom metadata keys (lower-cased; backends treat them case-insensitively)
UPLOADER_IDENTITY_KEY = "uploaderidentitykey"
CUSTOM_TIME_KEY = "customtime"

HEADER_STRATEGY = "header"
FORM_STRATEGY = "form"


def storage_key_for(object_identifier: str) -> str:
    return f"{CDN_PREFIX}{object_identifier}"


def format_custom_time(epoch_seconds: int | float) -> str:
    return format_timestamp(datetime.fromtimestamp(epoch_seconds, tz=timezone.utc))


@dataclass(frozen=True)
class CapabilityProfile:
    """Fixed behavioral differences between backends."""

    in_place_metadata_update: bool
    upload_strategies: frozenset[str]
    exists_via_metadata: bool = True


@dataclass
class ObjectMetadata:
    size: int
    content_type: str
    last_modified: datetime
    custom_metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class ObjectInfo:
    key: str
    size: int
    last_modified: datetime


@dataclass
class ObjectPage:
    objects: list[ObjectInfo]
    continuation_token: str | None = None
    is_truncated: bool = False


class UploadGrant(BaseModel):
    """Signed upload authorization. Exactly one of header PUT or multipart form POST applies."""

    model_config = ConfigDict(populate_by_name=True)
    upload_url: str = Field(alias="uploadURL")
    required_headers: dict[str, str] = Field(default_factory=dict, alias="requiredHeaders")
    form_fields: dict[str, str] | None = Field(default=None, alias="formFields")

    @property
    def is_form_upload(self) -> bool:
        return self.form_fields is not None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class StorageBackend(ABC):
    """Abstract object storage bound to one bucket."""

    capabilities: CapabilityProfile
    bucket: str

    def __init__(self, upload_strategy: str = HEADER_STRATEGY, grant_ttl_seconds: int = 604800,
                 custom_time_grace_seconds: int = 300) -> None:
        if upload_strategy not in self.capabilities.upload_strategies:
            raise ConfigurationError(
                f"Upload strategy {upload_strategy!r} not supported by {self.name()} storage",
                {"supported": ",".join(sorted(self.capabilities.upload_strategies))},
            )
        self.upload_strategy = upload_strategy
        self.grant_ttl_seconds = grant_ttl_seconds
        self.custom_time_grace_seconds = custom_time_grace_seconds

    @abstractmethod
    def name(self) -> str:
        """Backend identifier for diagnostics ("aws", "gcs")."""
        ...

    @abstractmethod
    def issue_upload_grant(
        self,
        size: int,
        expiry_time: int,
        object_identifier: str,
        uploader_identity_key: str,
    ) -> UploadGrant:
        """Sign a one-object upload to cdn/{object_identifier}. No I/O beyond signing.

        expiry_time is seconds since the epoch; customtime is bound as expiry_time plus the grace period.
        """
        ...

    @abstractmethod
    def get_metadata(self, key: str) -> ObjectMetadata:
        """Raise ObjectNotFoundError if missing."""
        ...

    def object_exists(self, key: str) -> bool:
        try:
            self.get_metadata(key)
        except ObjectNotFoundError:
            return False
        return True

    @abstractmethod
    def delete_object(self, key: str) -> None:
        ...

    @abstractmethod
    def list_objects(
        self,
        prefix: str | None = None,
        page_size: int = 1000,
        continuation_token: str | None = None,
    ) -> ObjectPage:
        ...

    @abstractmethod
    def issue_download_grant(self, key: str, ttl_seconds: int) -> str:
        """Return a URL that allows downloading the object."""
        ...

    @abstractmethod
    def iter_object(self, key: str, chunk_size: int = 1024 * 1024) -> Iterator[bytes]:
        """Stream object bytes in chunks so large objects are never fully resident."""
        ...

    def download_object(self, key: str) -> bytes:
        return b"".join(self.iter_object(key))

    def update_metadata(self, key: str, patch: Mapping[str, Any]) -> None:
        """Apply a partial custom-metadata patch, in place or by copying the object onto itself."""
        normalized = normalize_metadata_patch(patch)
        if self.capabilities.in_place_metadata_update:
            self._replace_metadata_in_place(key, normalized)
            return
        current = self.get_metadata(key)
        merged = merge_metadata(current.custom_metadata, normalized)
        self._copy_with_metadata(key, merged, current.content_type)

    def _replace_metadata_in_place(self, key: str, patch: dict[str, str]) -> None:
        raise NotImplementedError(f"{self.name()} storage does not update metadata in place")

    def _copy_with_metadata(self, key: str, metadata: dict[str, str], content_type: str) -> None:
        raise NotImplementedError(f"{self.name()} storage does not copy objects onto themselves")

    def custom_time_for(self, expiry_time: int) -> str:
        return format_custom_time(expiry_time + self.custom_time_grace_seconds)
