"""Ingestion pipeline: long-poll change notifications, hash each new cdn/ object, register its advertisement.

A message is deleted only after every object it announces has been registered (or deliberately skipped).
Failures leave the message on the queue so the channel redelivers it and eventually dead-letters it.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from cdn_gateway.core.config import Settings
from cdn_gateway.core.errors import MissingBoundMetadataError, RegistrationError, StorageError
from cdn_gateway.core.metrics import record_event_processed, record_event_skipped, record_processing_error
from cdn_gateway.services.content_pointer import pointer_for_chunks
from cdn_gateway.services.notifications import NotificationQueue, QueueMessage, parse_change_events
from cdn_gateway.services.registration import Registrar
from cdn_gateway.services.storage.base import CDN_PREFIX, CUSTOM_TIME_KEY, UPLOADER_IDENTITY_KEY, StorageBackend
from cdn_gateway.services.storage.metadata import parse_custom_time

logger = logging.getLogger(__name__)

REGISTERED = "registered"
SKIPPED = "skipped"

# /ready reports unavailable after this many failed polls in a row
MAX_CONSECUTIVE_POLL_FAILURES = 3


class IngestionPipeline:
    def __init__(
        self,
        storage: StorageBackend,
        queue: NotificationQueue,
        registrar: Registrar,
        max_messages: int = 10,
        wait_seconds: int = 20,
        max_workers: int = 10,
        poll_error_backoff_seconds: float = 5.0,
        default_expiry_days: int = 30,
        chunk_size: int = 1024 * 1024,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._queue = queue
        self._registrar = registrar
        self.max_messages = max_messages
        self.wait_seconds = wait_seconds
        self.max_workers = max(1, max_workers)
        self.poll_error_backoff_seconds = poll_error_backoff_seconds
        self.default_expiry_days = default_expiry_days
        self.chunk_size = chunk_size
        self._clock = clock
        self.consecutive_poll_failures = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        storage: StorageBackend,
        queue: NotificationQueue,
        registrar: Registrar,
    ) -> "IngestionPipeline":
        return cls(
            storage,
            queue,
            registrar,
            max_messages=settings.sqs_max_messages,
            wait_seconds=settings.sqs_wait_time_seconds,
            max_workers=settings.ingest_max_workers,
            poll_error_backoff_seconds=settings.poll_error_backoff_seconds,
            default_expiry_days=settings.default_expiry_days,
            chunk_size=settings.download_chunk_size,
        )

    @property
    def healthy(self) -> bool:
        return self.consecutive_poll_failures < MAX_CONSECUTIVE_POLL_FAILURES

    def run(self, stop_event: threading.Event) -> None:
        """Poll until stop_event is set. In-flight messages that are not deleted simply redeliver."""
        logger.info(
            "ingestion loop started provider=%s bucket=%s", self._storage.name(), self._storage.bucket,
        )
        while not stop_event.is_set():
            try:
                messages = self._queue.receive(self.max_messages, self.wait_seconds)
            except Exception:
                self.consecutive_poll_failures += 1
                logger.exception("error polling notification queue (attempt %d)", self.consecutive_poll_failures)
                record_processing_error("poll")
                stop_event.wait(self.poll_error_backoff_seconds)
                continue
            self.consecutive_poll_failures = 0
            if not messages:
                continue
            logger.info("received %d messages", len(messages))
            self.process_batch(messages)
        logger.info("ingestion loop stopped")

    def process_batch(self, messages: list[QueueMessage]) -> list[bool]:
        """Process one received batch concurrently. No ordering between messages."""
        if not messages:
            return []
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(messages)), thread_name_prefix="ingest") as pool:
            return list(pool.map(self.process_message, messages))

    def process_message(self, message: QueueMessage) -> bool:
        """Return True when the message was deleted. Never raises."""
        try:
            for event in parse_change_events(message.body):
                if not event.is_object_created:
                    continue
                self.process_object(event.bucket, event.key)
        except MissingBoundMetadataError as e:
            # Not uploaded through a grant; redelivers until remediated externally
            logger.error("message %s: %s", message.message_id, e.message)
            record_processing_error("missing_metadata")
            return False
        except RegistrationError as e:
            logger.error("message %s: registration failed: %s", message.message_id, e.message)
            record_processing_error("registration")
            return False
        except StorageError as e:
            logger.error("message %s: storage failure: %s", message.message_id, e.message)
            record_processing_error("storage")
            return False
        except Exception:
            logger.exception("error processing message %s", message.message_id)
            record_processing_error("message")
            return False
        try:
            self._queue.delete(message)
        except Exception:
            logger.exception("error deleting message %s", message.message_id)
            record_processing_error("ack")
            return False
        return True

    def process_object(self, bucket: str | None, key: str) -> str:
        """Hash and register one created object. Returns REGISTERED or SKIPPED; raises on failure."""
        if not key.startswith(CDN_PREFIX):
            logger.info("skipping non-CDN file: %s", key)
            record_event_skipped("outside_prefix")
            return SKIPPED
        if bucket and bucket != self._storage.bucket:
            logger.warning("skipping %s from bucket %s (serving %s)", key, bucket, self._storage.bucket)
            record_event_skipped("foreign_bucket")
            return SKIPPED

        metadata = self._storage.get_metadata(key)
        uploader_identity_key = metadata.custom_metadata.get(UPLOADER_IDENTITY_KEY)
        if not uploader_identity_key:
            raise MissingBoundMetadataError(
                f"Missing {UPLOADER_IDENTITY_KEY} in metadata for {key}",
                {"key": key, "available": ",".join(sorted(metadata.custom_metadata))},
            )
        expiry_time = self._expiry_time_for(key, metadata.custom_metadata.get(CUSTOM_TIME_KEY))

        uhrp_url, bytes_read = pointer_for_chunks(self._storage.iter_object(key, self.chunk_size))
        if bytes_read != metadata.size:
            logger.warning("%s: read %d bytes, metadata reports %d", key, bytes_read, metadata.size)
        object_identifier = key.rsplit("/", 1)[-1]

        self._registrar.register(
            uhrp_url=uhrp_url,
            uploader_identity_key=uploader_identity_key,
            object_identifier=object_identifier,
            expiry_time=expiry_time,
            file_size=metadata.size,
        )
        record_event_processed()
        logger.info("successfully advertised %s as %s", key, uhrp_url)
        return REGISTERED

    def _expiry_time_for(self, key: str, custom_time: str | None) -> int:
        if custom_time:
            try:
                return int(round(parse_custom_time(custom_time).timestamp()))
            except ValueError:
                logger.warning("%s: unparsable customtime %r", key, custom_time)
        logger.warning("%s: no customtime, using default expiry of %d days", key, self.default_expiry_days)
        return int(round(self._clock())) + self.default_expiry_days * 24 * 60 * 60
