"""Change-notification channel: S3 event parsing and an SQS long-poll queue."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from urllib.parse import unquote_plus

from cdn_gateway.core.config import Settings
from cdn_gateway.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

OBJECT_CREATED_PREFIX = "ObjectCreated:"


@dataclass(frozen=True)
class ChangeEvent:
    bucket: str
    key: str
    event_name: str

    @property
    def is_object_created(self) -> bool:
        return self.event_name.startswith(OBJECT_CREATED_PREFIX)


@dataclass
class QueueMessage:
    message_id: str
    receipt_handle: str
    body: str


def parse_change_events(body: str) -> list[ChangeEvent]:
    """Events embedded in an S3 notification body. Test events and unknown shapes yield none.

    Keys arrive URL-encoded with '+' for spaces.
    """
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        logger.warning("ignoring non-JSON notification body")
        return []
    if not isinstance(payload, dict):
        return []
    events = []
    for record in payload.get("Records") or []:
        try:
            s3 = record["s3"]
            events.append(
                ChangeEvent(
                    bucket=s3["bucket"]["name"],
                    key=unquote_plus(s3["object"]["key"]),
                    event_name=record.get("eventName") or "",
                )
            )
        except (KeyError, TypeError):
            logger.warning("ignoring malformed notification record")
    return events


@runtime_checkable
class NotificationQueue(Protocol):
    def receive(self, max_messages: int, wait_seconds: int) -> list[QueueMessage]: ...

    def delete(self, message: QueueMessage) -> None: ...


def _get_client(region: str):
    import boto3
    from botocore.config import Config
    cfg = Config(retries={"max_attempts": 8, "mode": "standard"}, region_name=region)
    return boto3.client("sqs", config=cfg)


class SQSNotificationQueue:
    """SQS long-poll consumer. Visibility timeout, redelivery and dead-lettering belong to the queue."""

    def __init__(self, queue_url: str, region: str = "us-west-2", client: Any = None) -> None:
        if not queue_url:
            raise ConfigurationError("sqs_queue_url is required for ingestion")
        self.queue_url = queue_url
        self._client = client or _get_client(region)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SQSNotificationQueue":
        return cls(queue_url=settings.sqs_queue_url or "", region=settings.aws_region)

    def receive(self, max_messages: int, wait_seconds: int) -> list[QueueMessage]:
        resp = self._client.receive_message(
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=max(1, min(max_messages, 10)),
            WaitTimeSeconds=max(0, min(wait_seconds, 20)),
            MessageAttributeNames=["All"],
        )
        return [
            QueueMessage(
                message_id=m.get("MessageId") or "",
                receipt_handle=m["ReceiptHandle"],
                body=m.get("Body") or "",
            )
            for m in resp.get("Messages") or []
        ]

    def delete(self, message: QueueMessage) -> None:
        self._client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=message.receipt_handle)
