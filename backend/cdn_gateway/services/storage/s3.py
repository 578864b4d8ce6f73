"""S3 storage backend: header-signed PUT or form-policy POST grants, HeadObject metadata, copy-based metadata updates."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
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
    FORM_STRATEGY,
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

_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound", "NoSuchObject"})
_REJECTED_CODES = frozenset({"SignatureDoesNotMatch", "AccessDenied", "InvalidPolicyDocument", "EntityTooSmall", "EntityTooLarge"})
_TRANSIENT_CODES = frozenset({
    "SlowDown", "Throttling", "ThrottlingException", "RequestTimeout", "RequestTimeTooSkewed",
    "ServiceUnavailable", "InternalError", "500", "502", "503", "504",
})


def _get_client(region: str):
    import boto3
    from botocore.config import Config
    cfg = Config(
        retries={"max_attempts": 8, "mode": "standard"},
        region_name=region,
        signature_version="s3v4",
    )
    return boto3.client("s3", config=cfg)


def _error_code(exc: Exception) -> str | None:
    resp = getattr(exc, "response", None)
    if not isinstance(resp, dict):
        return None
    code = resp.get("Error", {}).get("Code")
    if code:
        return str(code)
    status = resp.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return str(status) if status else None


def _normalize_error(exc: Exception, key: str) -> Exception:
    """Map a botocore error onto the gateway taxonomy; unknown errors are returned unchanged."""
    from botocore.exceptions import ConnectionError as BotoConnectionError
    from botocore.exceptions import ReadTimeoutError

    if isinstance(exc, (BotoConnectionError, ReadTimeoutError)):
        return TransientBackendError(f"S3 unreachable for {key}: {exc}")
    code = _error_code(exc)
    if code in _NOT_FOUND_CODES:
        return ObjectNotFoundError(f"Object not found: {key}")
    if code in _REJECTED_CODES:
        return SignatureOrPolicyRejectedError(f"S3 rejected request for {key}", {"code": code})
    if code in _TRANSIENT_CODES:
        return TransientBackendError(f"S3 transient failure for {key}", {"code": code})
    return exc


@contextmanager
def _translate_errors(key: str) -> Iterator[None]:
    try:
        yield
    except Exception as e:
        normalized = _normalize_error(e, key)
        if normalized is e:
            raise
        raise normalized from e


class S3Storage(StorageBackend):
    """S3 backend. Metadata cannot be mutated in place, so updates copy the object onto itself."""

    capabilities = CapabilityProfile(
        in_place_metadata_update=False,
        upload_strategies=frozenset({HEADER_STRATEGY, FORM_STRATEGY}),
    )

    def __init__(
        self,
        bucket: str,
        region: str = "us-west-2",
        client: Any = None,
        upload_strategy: str = HEADER_STRATEGY,
        grant_ttl_seconds: int = 604800,
        custom_time_grace_seconds: int = 300,
    ) -> None:
        bucket = (bucket or "").strip()
        if not bucket:
            raise ConfigurationError("S3 storage requires storage_bucket_name to be set")
        super().__init__(upload_strategy, grant_ttl_seconds, custom_time_grace_seconds)
        self.bucket = bucket
        self.region = region
        self._client = client or _get_client(region)

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3Storage":
        return cls(
            bucket=settings.storage_bucket_name or "",
            region=settings.aws_region,
            upload_strategy=settings.upload_strategy,
            grant_ttl_seconds=settings.upload_grant_ttl_seconds,
            custom_time_grace_seconds=settings.custom_time_grace_seconds,
        )

    def name(self) -> str:
        return "aws"

    def issue_upload_grant(
        self,
        size: int,
        expiry_time: int,
        object_identifier: str,
        uploader_identity_key: str,
    ) -> UploadGrant:
        key = storage_key_for(object_identifier)
        custom_time = self.custom_time_for(expiry_time)
        if self.upload_strategy == FORM_STRATEGY:
            return self._form_grant(key, size, uploader_identity_key, custom_time)
        # Signature covers content-length and both x-amz-meta headers; clients must send them exactly
        url = self._client.generate_presigned_url(
            "put_object",
            Params={
                "Bucket": self.bucket,
                "Key": key,
                "ContentLength": size,
                "Metadata": {
                    UPLOADER_IDENTITY_KEY: uploader_identity_key,
                    CUSTOM_TIME_KEY: custom_time,
                },
            },
            ExpiresIn=self.grant_ttl_seconds,
        )
        return UploadGrant(
            upload_url=url,
            required_headers={
                "content-length": str(size),
                f"x-amz-meta-{UPLOADER_IDENTITY_KEY}": uploader_identity_key,
                f"x-amz-meta-{CUSTOM_TIME_KEY}": custom_time,
            },
        )

    def _form_grant(self, key: str, size: int, uploader_identity_key: str, custom_time: str) -> UploadGrant:
        fields = {
            f"x-amz-meta-{UPLOADER_IDENTITY_KEY}": uploader_identity_key,
            f"x-amz-meta-{CUSTOM_TIME_KEY}": custom_time,
        }
        # Every prefilled field needs its own condition or S3 rejects the POST as extra input
        conditions: list[Any] = [["content-length-range", size, size]]
        conditions.extend({k: v} for k, v in fields.items())
        post = self._client.generate_presigned_post(
            Bucket=self.bucket,
            Key=key,
            Fields=fields,
            Conditions=conditions,
            ExpiresIn=self.grant_ttl_seconds,
        )
        return UploadGrant(
            upload_url=post["url"],
            required_headers={},
            form_fields={str(k): str(v) for k, v in post["fields"].items()},
        )

    def get_metadata(self, key: str) -> ObjectMetadata:
        with _translate_errors(key):
            resp = self._client.head_object(Bucket=self.bucket, Key=key)
        return ObjectMetadata(
            size=resp.get("ContentLength") or 0,
            content_type=resp.get("ContentType") or DEFAULT_CONTENT_TYPE,
            last_modified=resp.get("LastModified") or datetime.now(timezone.utc),
            # S3 already lower-cases user metadata keys
            custom_metadata={str(k).lower(): str(v) for k, v in (resp.get("Metadata") or {}).items()},
        )

    def delete_object(self, key: str) -> None:
        with _translate_errors(key):
            self._client.delete_object(Bucket=self.bucket, Key=key)

    def list_objects(
        self,
        prefix: str | None = None,
        page_size: int = 1000,
        continuation_token: str | None = None,
    ) -> ObjectPage:
        params: dict[str, Any] = {"Bucket": self.bucket, "MaxKeys": page_size}
        if prefix:
            params["Prefix"] = prefix
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        with _translate_errors(prefix or ""):
            resp = self._client.list_objects_v2(**params)
        objects = [
            ObjectInfo(
                key=obj.get("Key") or "",
                size=obj.get("Size") or 0,
                last_modified=obj.get("LastModified") or datetime.now(timezone.utc),
            )
            for obj in resp.get("Contents") or []
        ]
        return ObjectPage(
            objects=objects,
            continuation_token=resp.get("NextContinuationToken"),
            is_truncated=bool(resp.get("IsTruncated")),
        )

    def issue_download_grant(self, key: str, ttl_seconds: int) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=max(1, ttl_seconds),
        )

    def iter_object(self, key: str, chunk_size: int = 1024 * 1024) -> Iterator[bytes]:
        with _translate_errors(key):
            resp = self._client.get_object(Bucket=self.bucket, Key=key)
        body = resp["Body"]
        try:
            for chunk in body.iter_chunks(chunk_size=chunk_size):
                if chunk:
                    yield chunk
        finally:
            body.close()

    def _copy_with_metadata(self, key: str, metadata: dict[str, str], content_type: str) -> None:
        # Copy onto itself; the source is untouched until the copy succeeds
        with _translate_errors(key):
            self._client.copy_object(
                Bucket=self.bucket,
                Key=key,
                CopySource={"Bucket": self.bucket, "Key": key},
                Metadata=metadata,
                MetadataDirective="REPLACE",
                ContentType=content_type or DEFAULT_CONTENT_TYPE,
            )
