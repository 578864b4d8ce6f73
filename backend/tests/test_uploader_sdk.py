"""Uploader SDK: PUT and form POST grants, retries, signature rejection."""
from unittest.mock import patch

import httpx
import pytest

from cdn_uploader import GrantUploader, SignatureOrPolicyRejectedError, UploadError


def _uploader(handler, **kwargs):
    return GrantUploader(session=httpx.Client(transport=httpx.MockTransport(handler)), **kwargs)


@pytest.fixture
def payload(tmp_path):
    path = tmp_path / "photo.png"
    path.write_bytes(b"x" * 42)
    return path


def test_put_sends_required_headers(payload):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200)

    grant = {
        "uploadURL": "https://mock-s3/cdn/abc?X-Amz-Signature=sig",
        "requiredHeaders": {"content-length": "42", "x-amz-meta-uploaderidentitykey": "02ab"},
    }
    with _uploader(handler) as uploader:
        uploader.upload(grant, payload)

    assert len(seen) == 1
    assert seen[0].method == "PUT"
    assert seen[0].headers["x-amz-meta-uploaderidentitykey"] == "02ab"
    assert seen[0].content == b"x" * 42


def test_put_size_mismatch_is_rejected_locally(payload):
    grant = {"uploadURL": "https://mock-s3/cdn/abc", "requiredHeaders": {"content-length": "41"}}
    with pytest.raises(ValueError, match="does not match"):
        _uploader(lambda r: httpx.Response(200)).upload(grant, payload)


def test_form_post_sends_fields_then_file(payload):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(204)

    grant = {
        "uploadURL": "https://cdn-bucket.s3.amazonaws.com/",
        "requiredHeaders": {},
        "formFields": {"key": "cdn/abc", "policy": "p", "x-amz-meta-uploaderidentitykey": "02ab"},
    }
    _uploader(handler).upload(grant, payload)

    body = seen[0].read()
    assert seen[0].method == "POST"
    assert seen[0].headers["content-type"].startswith("multipart/form-data")
    assert body.index(b'name="policy"') < body.index(b'name="file"')
    assert b"x" * 42 in body


def test_signature_mismatch_is_not_retried(payload):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(403, text="<Error><Code>SignatureDoesNotMatch</Code></Error>")

    with pytest.raises(SignatureOrPolicyRejectedError):
        _uploader(handler).upload({"uploadURL": "https://mock-s3/cdn/abc", "requiredHeaders": {}}, payload)
    assert len(calls) == 1


def test_server_errors_retry_then_succeed(payload):
    responses = iter([httpx.Response(503), httpx.Response(200)])
    with patch("cdn_uploader.client.time.sleep") as m_sleep:
        _uploader(lambda r: next(responses)).upload({"uploadURL": "https://mock-s3/cdn/abc"}, payload)
    m_sleep.assert_called_once()


def test_gives_up_after_max_retries(payload):
    with patch("cdn_uploader.client.time.sleep"):
        with pytest.raises(UploadError, match="after 2 attempts"):
            _uploader(lambda r: httpx.Response(500), max_retries=2).upload(
                {"uploadURL": "https://mock-s3/cdn/abc"}, payload
            )


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        _uploader(lambda r: httpx.Response(200)).upload({"uploadURL": "https://x"}, tmp_path / "nope")
