"""GCS storage backend: V4 signed PUT grants with signed extension headers, in-place metadata patches."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator

from cdn_gateway.core.config import Settings
from cdn_gateway.core.errors import (
    ConfigurationError,
    ObjectNotFoundError,
    SignatureOrPolicyRejectedError,
    TransientBackendError,
)
from cdn_gateway.services.storage.base import (
    CUSTOM_TIME_KEY,
    DEFAULT_CONTENT_TYPE,
    HEADER_STRATEGY,
    UPLOADER_IDENTITY_KEY,
    CapabilityProfile,
    ObjectInfo,
    ObjectMetadata,
    ObjectPage,
    StorageBackend,
    UploadGrant,
    storage_key_for,
)
from cdn_gateway.services.storage.metadata import format_timestamp, parse_custom_time

# V4 signatures cannot outlive seven days
_MAX_SIGNED_URL_SECONDS = 604800


def _get_client(project: str, credentials_file: str | None = None):
    from google.cloud import storage
    if credentials_file:
        return storage.Client.from_service_account_json(credentials_file, project=project)
    return storage.Client(project=project)


@contextmanager
def _translate_errors(key: str) -> Iterator[None]:
    from google.api_core import exceptions as gexc
    from requests.exceptions import ConnectionError as RequestsConnectionError
    from requests.exceptions import Timeout

    try:
        yield
    except gexc.NotFound as e:
        raise ObjectNotFoundError(f"Object not found: {key}") from e
    except gexc.Forbidden as e:
        raise SignatureOrPolicyRejectedError(f"GCS rejected request for {key}", {"code": str(e.code)}) from e
    except (gexc.TooManyRequests, gexc.InternalServerError, gexc.BadGateway,
            gexc.ServiceUnavailable, gexc.GatewayTimeout) as e:
        raise TransientBackendError(f"GCS transient failure for {key}", {"code": str(e.code)}) from e
    except (RequestsConnectionError, Timeout) as e:
        raise TransientBackendError(f"GCS unreachable for {key}: {e}") from e


class GCSStorage(StorageBackend):
    """GCS backend. customTime is a native object field; it is surfaced as custom metadata key customtime."""

    capabilities = CapabilityProfile(
        in_place_metadata_update=True,
        upload_strategies=frozenset({HEADER_STRATEGY}),
    )

    def __init__(
        self,
        bucket: str,
        project: str | None = None,
        client: Any = None,
        credentials_file: str | None = None,
        upload_strategy: str = HEADER_STRATEGY,
        grant_ttl_seconds: int = 604800,
        custom_time_grace_seconds: int = 300,
    ) -> None:
        bucket = (bucket or "").strip()
        if not bucket:
            raise ConfigurationError("GCS storage requires storage_bucket_name to be set")
        if client is None and not project:
            raise ConfigurationError("GCS storage requires gcp_project_id to be set")
        super().__init__(upload_strategy, min(grant_ttl_seconds, _MAX_SIGNED_URL_SECONDS), custom_time_grace_seconds)
        self.bucket = bucket
        self._client = client or _get_client(project, credentials_file)
        self._bucket = self._client.bucket(bucket)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GCSStorage":
        return cls(
            bucket=settings.storage_bucket_name or "",
            project=settings.gcp_project_id,
            credentials_file=settings.gcp_credentials_file,
            upload_strategy=settings.upload_strategy,
            grant_ttl_seconds=settings.upload_grant_ttl_seconds,
            custom_time_grace_seconds=settings.custom_time_grace_seconds,
        )

    def name(self) -> str:
        return "gcs"

    def issue_upload_grant(
        self,
        size: int,
        expiry_time: int,
        object_identifier: str,
        uploader_identity_key: str,
    ) -> UploadGrant:
        blob = self._bucket.blob(storage_key_for(object_identifier))
        custom_time = self.custom_time_for(expiry_time)
        # Extension headers are part of the signature; the PUT must carry them verbatim
        headers = {
            "content-length": str(size),
            f"x-goog-meta-{UPLOADER_IDENTITY_KEY}": uploader_identity_key,
            "x-goog-custom-time": custom_time,
        }
        url = blob.generate_signed_url(
            version="v4",
            method="PUT",
            expiration=timedelta(seconds=self.grant_ttl_seconds),
            headers=headers,
        )
        return UploadGrant(upload_url=url, required_headers=dict(headers))

    def get_metadata(self, key: str) -> ObjectMetadata:
        with _translate_errors(key):
            blob = self._bucket.get_blob(key)
        if blob is None:
            raise ObjectNotFoundError(f"Object not found: {key}")
        custom = {str(k).lower(): str(v) for k, v in (blob.metadata or {}).items()}
        if blob.custom_time is not None and CUSTOM_TIME_KEY not in custom:
            custom[CUSTOM_TIME_KEY] = format_timestamp(blob.custom_time)
        return ObjectMetadata(
            size=int(blob.size or 0),
            content_type=blob.content_type or DEFAULT_CONTENT_TYPE,
            last_modified=blob.updated or blob.time_created or datetime.now(timezone.utc),
            custom_metadata=custom,
        )

    def delete_object(self, key: str) -> None:
        with _translate_errors(key):
            self._bucket.blob(key).delete()

    def list_objects(
        self,
        prefix: str | None = None,
        page_size: int = 1000,
        continuation_token: str | None = None,
    ) -> ObjectPage:
        with _translate_errors(prefix or ""):
            iterator = self._client.list_blobs(
                self.bucket,
                prefix=prefix,
                max_results=page_size,
                page_token=continuation_token,
            )
            page = next(iterator.pages, None)
            blobs = list(page) if page is not None else []
        objects = [
            ObjectInfo(
                key=blob.name,
                size=int(blob.size or 0),
                last_modified=blob.updated or blob.time_created or datetime.now(timezone.utc),
            )
            for blob in blobs
        ]
        next_token = iterator.next_page_token
        return ObjectPage(objects=objects, continuation_token=next_token, is_truncated=bool(next_token))

    def issue_download_grant(self, key: str, ttl_seconds: int) -> str:
        ttl = max(1, min(ttl_seconds, _MAX_SIGNED_URL_SECONDS))
        return self._bucket.blob(key).generate_signed_url(
            version="v4",
            method="GET",
            expiration=timedelta(seconds=ttl),
        )

    def iter_object(self, key: str, chunk_size: int = 1024 * 1024) -> Iterator[bytes]:
        with _translate_errors(key):
            reader = self._bucket.blob(key).open("rb", chunk_size=chunk_size)
        with reader:
            while True:
                with _translate_errors(key):
                    chunk = reader.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    def _replace_metadata_in_place(self, key: str, patch: dict[str, str]) -> None:
        blob = self._bucket.blob(key)
        custom_time = patch.get(CUSTOM_TIME_KEY)
        rest = {k: v for k, v in patch.items() if k != CUSTOM_TIME_KEY}
        if custom_time is not None:
            blob.custom_time = parse_custom_time(custom_time)
        if rest:
            # PATCH merges metadata keys server-side; keys absent from the patch are kept
            blob.metadata = rest
        with _translate_errors(key):
            blob.patch()
