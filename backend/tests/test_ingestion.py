"""Ingestion pipeline: prefix filtering, bound-metadata checks, acknowledgement rules, run loop."""
import hashlib
import threading

from cdn_gateway.core.errors import RegistrationError
from cdn_gateway.services.content_pointer import pointer_for_digest
from cdn_gateway.services.ingestion import REGISTERED, SKIPPED, IngestionPipeline
from cdn_gateway.services.notifications import QueueMessage
from conftest import FakeQueue, RecordingRegistrar, queue_message, s3_event

NOW = 1_700_000_000
OWNER = "02ab"


def _pipeline(storage, registrar, queue=None, **kwargs):
    kwargs.setdefault("clock", lambda: NOW)
    return IngestionPipeline(storage, queue or FakeQueue(), registrar, chunk_size=4, **kwargs)


def _upload(storage, identifier="abc", data=b"hello world", **metadata):
    metadata.setdefault("uploaderidentitykey", OWNER)
    storage.put(f"cdn/{identifier}", data, metadata)


def test_registers_created_object(storage, registrar):
    _upload(storage, customtime="2023-11-14T23:18:20.000Z")
    queue = FakeQueue()
    pipeline = _pipeline(storage, registrar, queue)

    assert pipeline.process_message(queue_message("m1", s3_event("cdn/abc"))) is True
    assert queue.deleted == ["m1"]
    assert registrar.calls == [{
        "uhrp_url": pointer_for_digest(hashlib.sha256(b"hello world").digest()),
        "uploader_identity_key": OWNER,
        "object_identifier": "abc",
        "expiry_time": NOW + 3900,
        "file_size": 11,
    }]


def test_object_outside_prefix_is_acknowledged_without_registration(storage, registrar):
    storage.put("other/foo", b"x")
    queue = FakeQueue()
    pipeline = _pipeline(storage, registrar, queue)

    assert pipeline.process_message(queue_message("m1", s3_event("other/foo"))) is True
    assert queue.deleted == ["m1"]
    assert registrar.calls == []
    assert pipeline.process_object("cdn-bucket", "other/foo") == SKIPPED


def test_foreign_bucket_is_skipped(storage, registrar):
    _upload(storage)
    assert _pipeline(storage, registrar).process_object("someone-elses-bucket", "cdn/abc") == SKIPPED
    assert registrar.calls == []


def test_missing_uploader_key_leaves_message_on_queue(storage, registrar):
    storage.put("cdn/abc", b"x", {"customtime": "2023-11-14T23:18:20.000Z"})
    queue = FakeQueue()
    assert _pipeline(storage, registrar, queue).process_message(queue_message("m1", s3_event("cdn/abc"))) is False
    assert queue.deleted == []
    assert registrar.calls == []


def test_registration_failure_leaves_message_on_queue(storage):
    _upload(storage)
    queue = FakeQueue()
    registrar = RecordingRegistrar(error=RegistrationError("Advertise rejected abc with 500"))
    assert _pipeline(storage, registrar, queue).process_message(queue_message("m1", s3_event("cdn/abc"))) is False
    assert queue.deleted == []


def test_missing_object_leaves_message_on_queue(storage, registrar):
    queue = FakeQueue()
    assert _pipeline(storage, registrar, queue).process_message(queue_message("m1", s3_event("cdn/gone"))) is False
    assert queue.deleted == []


def test_redelivery_registers_identical_payload(storage, registrar):
    _upload(storage, customtime="2023-11-14T23:18:20.000Z")
    queue = FakeQueue()
    pipeline = _pipeline(storage, registrar, queue)
    message = queue_message("m1", s3_event("cdn/abc"))

    pipeline.process_message(message)
    pipeline.process_message(message)
    assert len(registrar.calls) == 2
    assert registrar.calls[0] == registrar.calls[1]


def test_missing_customtime_uses_default_expiry(storage, registrar):
    _upload(storage)
    assert _pipeline(storage, registrar).process_object("cdn-bucket", "cdn/abc") == REGISTERED
    assert registrar.calls[0]["expiry_time"] == NOW + 30 * 24 * 60 * 60


def test_unparsable_customtime_uses_default_expiry(storage, registrar):
    _upload(storage, customtime="garbage")
    _pipeline(storage, registrar, default_expiry_days=1).process_object("cdn-bucket", "cdn/abc")
    assert registrar.calls[0]["expiry_time"] == NOW + 24 * 60 * 60


def test_non_create_events_and_junk_bodies_are_acknowledged(storage, registrar):
    queue = FakeQueue()
    pipeline = _pipeline(storage, registrar, queue)
    assert pipeline.process_message(queue_message("m1", s3_event("cdn/abc", event_name="ObjectRemoved:Delete"))) is True
    assert pipeline.process_message(QueueMessage(message_id="m2", receipt_handle="rh", body="not json")) is True
    assert queue.deleted == ["m1", "m2"]
    assert registrar.calls == []


def test_url_encoded_keys_are_decoded(storage, registrar):
    _upload(storage, identifier="my file")
    _pipeline(storage, registrar).process_message(queue_message("m1", s3_event("cdn/my+file")))
    assert registrar.calls[0]["object_identifier"] == "my file"


def test_batch_processes_each_message_independently(storage, registrar):
    _upload(storage, identifier="a")
    queue = FakeQueue()
    results = _pipeline(storage, registrar, queue).process_batch([
        queue_message("ok", s3_event("cdn/a")),
        queue_message("bad", s3_event("cdn/missing")),
    ])
    assert results == [True, False]
    assert queue.deleted == ["ok"]


def test_run_stops_when_event_set(storage, registrar):
    _upload(storage)
    stop = threading.Event()

    class StoppingQueue(FakeQueue):
        def receive(self, max_messages, wait_seconds):
            batch = super().receive(max_messages, wait_seconds)
            if not self.batches:
                stop.set()
            return batch

    queue = StoppingQueue([[queue_message("m1", s3_event("cdn/abc"))]])
    _pipeline(storage, registrar, queue).run(stop)
    assert queue.deleted == ["m1"]
    assert len(registrar.calls) == 1


def test_poll_failures_back_off_and_mark_unhealthy(storage, registrar):
    stop = threading.Event()

    class BrokenQueue(FakeQueue):
        def receive(self, max_messages, wait_seconds):
            self.receive_calls += 1
            if self.receive_calls >= 3:
                stop.set()
            raise ConnectionError("queue unreachable")

    queue = BrokenQueue()
    pipeline = _pipeline(storage, registrar, queue, poll_error_backoff_seconds=0)
    assert pipeline.healthy
    pipeline.run(stop)
    assert queue.receive_calls == 3
    assert pipeline.consecutive_poll_failures == 3
    assert not pipeline.healthy
