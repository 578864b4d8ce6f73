"""Advertise endpoint client: payload shape, error mapping, token redaction."""
import json
import logging

import httpx
import pytest

from cdn_gateway.core.errors import ConfigurationError, RegistrationError
from cdn_gateway.core.logging_redaction import redact_for_log
from cdn_gateway.services.registration import AdvertisementRegistrar

ADMIN_TOKEN = "super-secret-admin-token"


def _registrar(handler):
    client = httpx.Client(base_url="https://cdn.example", transport=httpx.MockTransport(handler))
    return AdvertisementRegistrar("https://cdn.example", ADMIN_TOKEN, client=client)


def _register(registrar):
    registrar.register(
        uhrp_url="XUTpointer",
        uploader_identity_key="02ab",
        object_identifier="abc",
        expiry_time=1_700_003_900,
        file_size=11,
    )


def test_register_posts_advertise_payload():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"status": "success"})

    _register(_registrar(handler))
    assert seen == [("POST", "/advertise", {
        "adminToken": ADMIN_TOKEN,
        "uhrpUrl": "XUTpointer",
        "uploaderIdentityKey": "02ab",
        "objectIdentifier": "abc",
        "expiryTime": 1_700_003_900,
        "fileSize": 11,
    })]


def test_non_2xx_raises_registration_error():
    registrar = _registrar(lambda r: httpx.Response(500, text="boom"))
    with pytest.raises(RegistrationError, match="500") as exc_info:
        _register(registrar)
    assert exc_info.value.details["status_code"] == "500"


def test_transport_failure_raises_registration_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RegistrationError, match="connection refused"):
        _register(_registrar(handler))


def test_admin_token_is_not_logged(caplog):
    with caplog.at_level(logging.INFO, logger="cdn_gateway.services.registration"):
        _register(_registrar(lambda r: httpx.Response(200)))
    assert "sending advertisement" in caplog.text
    assert ADMIN_TOKEN not in caplog.text


@pytest.mark.parametrize("domain,token", [("", ADMIN_TOKEN), ("https://cdn.example", "")])
def test_registrar_requires_domain_and_token(domain, token):
    with pytest.raises(ConfigurationError):
        AdvertisementRegistrar(domain, token)


def test_redact_for_log():
    out = redact_for_log({
        "adminToken": "t",
        "nested": {"private_key": "k", "ok": "v"},
        "url": "https://s3/x?X-Amz-Signature=abcdef&X-Amz-Expires=60",
        "auth": "Bearer abc",
    })
    assert out["adminToken"] == "[REDACTED]"
    assert out["nested"] == {"private_key": "[REDACTED]", "ok": "v"}
    assert out["url"] == "https://s3/x?X-Amz-Signature=[REDACTED]&X-Amz-Expires=60"
    assert out["auth"] == "[REDACTED]"
