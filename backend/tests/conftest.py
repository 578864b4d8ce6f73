"""Pytest fixtures: in-memory storage, queue, registrar and advertisement store (no cloud access)."""
import json
from datetime import datetime, timezone

import pytest

from cdn_gateway.core.config import get_settings
from cdn_gateway.core.errors import ObjectNotFoundError
from cdn_gateway.services.advertisements import AdvertisementRecord
from cdn_gateway.services.notifications import QueueMessage
from cdn_gateway.services.storage.base import (
    HEADER_STRATEGY,
    CapabilityProfile,
    ObjectInfo,
    ObjectMetadata,
    ObjectPage,
    StorageBackend,
    UploadGrant,
    storage_key_for,
)
from cdn_gateway.services.storage.metadata import normalize_metadata_patch

BUCKET = "cdn-bucket"


class InMemoryStorage(StorageBackend):
    """Copy-based backend over a dict: key -> (bytes, content_type, custom metadata)."""

    capabilities = CapabilityProfile(in_place_metadata_update=False, upload_strategies=frozenset({HEADER_STRATEGY}))

    def __init__(self, bucket: str = BUCKET) -> None:
        super().__init__()
        self.bucket = bucket
        self.objects: dict[str, tuple[bytes, str, dict[str, str]]] = {}
        self.copies: list[str] = []

    def put(self, key: str, data: bytes, metadata: dict | None = None, content_type: str = "application/octet-stream"):
        self.objects[key] = (data, content_type, normalize_metadata_patch(metadata or {}))

    def name(self) -> str:
        return "memory"

    def issue_upload_grant(self, size, expiry_time, object_identifier, uploader_identity_key):
        return UploadGrant(
            upload_url=f"memory://{self.bucket}/{storage_key_for(object_identifier)}",
            required_headers={"content-length": str(size), "customtime": self.custom_time_for(expiry_time)},
        )

    def get_metadata(self, key):
        if key not in self.objects:
            raise ObjectNotFoundError(f"Object not found: {key}")
        data, content_type, metadata = self.objects[key]
        return ObjectMetadata(
            size=len(data),
            content_type=content_type,
            last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc),
            custom_metadata=dict(metadata),
        )

    def delete_object(self, key):
        self.objects.pop(key, None)

    def list_objects(self, prefix=None, page_size=1000, continuation_token=None):
        keys = sorted(k for k in self.objects if not prefix or k.startswith(prefix))
        return ObjectPage(
            objects=[
                ObjectInfo(key=k, size=len(self.objects[k][0]), last_modified=datetime(2024, 1, 1, tzinfo=timezone.utc))
                for k in keys[:page_size]
            ],
            is_truncated=len(keys) > page_size,
        )

    def issue_download_grant(self, key, ttl_seconds):
        return f"memory://{self.bucket}/{key}?ttl={ttl_seconds}"

    def iter_object(self, key, chunk_size=1024 * 1024):
        if key not in self.objects:
            raise ObjectNotFoundError(f"Object not found: {key}")
        data = self.objects[key][0]
        for i in range(0, len(data), chunk_size):
            yield data[i:i + chunk_size]

    def _copy_with_metadata(self, key, metadata, content_type):
        data, _, _ = self.objects[key]
        self.copies.append(key)
        self.objects[key] = (data, content_type, dict(metadata))


class FakeQueue:
    def __init__(self, batches=None):
        self.batches = list(batches or [])
        self.deleted: list[str] = []
        self.receive_calls = 0

    def receive(self, max_messages, wait_seconds):
        self.receive_calls += 1
        if not self.batches:
            return []
        return self.batches.pop(0)

    def delete(self, message):
        self.deleted.append(message.message_id)


class RecordingRegistrar:
    def __init__(self, error: Exception | None = None):
        self.calls: list[dict] = []
        self.error = error

    def register(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.calls.append(kwargs)


class FakeAdvertisementStore:
    def __init__(self, records=None):
        self.records = list(records or [])
        self.queries: list[dict] = []

    def list_advertisements(self, tags, limit=200, offset=0):
        self.queries.append({"tags": list(tags), "limit": limit, "offset": offset})
        return [AdvertisementRecord(tags=list(r.tags)) for r in self.records]


def s3_event(key: str, bucket: str = BUCKET, event_name: str = "ObjectCreated:Put") -> dict:
    return {"eventName": event_name, "s3": {"bucket": {"name": bucket}, "object": {"key": key}}}


def queue_message(message_id: str, *records: dict) -> QueueMessage:
    return QueueMessage(message_id=message_id, receipt_handle=f"rh-{message_id}", body=json.dumps({"Records": list(records)}))


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def registrar():
    return RecordingRegistrar()


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
