"""Change-notification parsing and the SQS queue wrapper."""
import json
from unittest.mock import MagicMock

import pytest

from cdn_gateway.core.errors import ConfigurationError
from cdn_gateway.services.notifications import QueueMessage, SQSNotificationQueue, parse_change_events
from conftest import s3_event


def test_parse_records():
    body = json.dumps({"Records": [s3_event("cdn/a%2Bb+c", bucket="bkt")]})
    events = parse_change_events(body)
    assert len(events) == 1
    assert events[0].bucket == "bkt"
    assert events[0].key == "cdn/a+b c"
    assert events[0].is_object_created


@pytest.mark.parametrize("body", ["", "[]", "not json", json.dumps({"Event": "s3:TestEvent"})])
def test_parse_ignores_unknown_shapes(body):
    assert parse_change_events(body) == []


def test_parse_skips_malformed_records():
    body = json.dumps({"Records": [{"eventName": "ObjectCreated:Put"}, s3_event("cdn/ok")]})
    assert [e.key for e in parse_change_events(body)] == ["cdn/ok"]


def test_sqs_queue_requires_url():
    with pytest.raises(ConfigurationError):
        SQSNotificationQueue("", client=MagicMock())


def test_sqs_receive_clamps_and_maps_messages():
    client = MagicMock()
    client.receive_message.return_value = {
        "Messages": [{"MessageId": "m1", "ReceiptHandle": "rh1", "Body": "{}"}],
    }
    queue = SQSNotificationQueue("https://sqs.example/q", client=client)
    messages = queue.receive(50, 60)

    assert messages == [QueueMessage(message_id="m1", receipt_handle="rh1", body="{}")]
    kwargs = client.receive_message.call_args.kwargs
    assert kwargs["MaxNumberOfMessages"] == 10
    assert kwargs["WaitTimeSeconds"] == 20
    assert kwargs["QueueUrl"] == "https://sqs.example/q"


def test_sqs_receive_empty():
    client = MagicMock()
    client.receive_message.return_value = {}
    assert SQSNotificationQueue("https://sqs.example/q", client=client).receive(10, 20) == []


def test_sqs_delete_uses_receipt_handle():
    client = MagicMock()
    queue = SQSNotificationQueue("https://sqs.example/q", client=client)
    queue.delete(QueueMessage(message_id="m1", receipt_handle="rh1", body=""))
    client.delete_message.assert_called_once_with(QueueUrl="https://sqs.example/q", ReceiptHandle="rh1")
