"""Scrub secrets before they reach the logs: admin tokens, signing material, wallet keys."""
import re
from typing import Any

REDACTED = "[REDACTED]"

# Matched as substrings of the lower-cased key, so adminToken and x-admin-token both hit "token"
SENSITIVE_KEY_PARTS = (
    "token", "secret", "password", "authorization", "cookie",
    "credential", "private_key", "privatekey", "xpriv", "api_key",
)

# Query parameters that carry signing material on upload/download grant URLs
_SIGNED_QUERY_PARAM = re.compile(
    r"(?P<name>X-(?:Amz|Goog)-(?:Signature|Credential|Security-Token)=)[^&\s]+",
    re.IGNORECASE,
)
_JWT = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$")


def is_sensitive_key(key: Any) -> bool:
    lowered = str(key).lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def redact_url(url: str) -> str:
    """Keep a signed URL readable (host, key, expiry) while hiding its signature and credential scope."""
    return _SIGNED_QUERY_PARAM.sub(lambda m: m.group("name") + REDACTED, url)


def _is_secret_value(value: str) -> bool:
    if value[:7].lower() == "bearer ":
        return True
    if len(value) > 64 and _JWT.match(value):
        return True
    # BIP32 extended private keys
    return value.startswith(("xprv", "tprv")) and len(value) > 100


def redact_for_log(obj: Any) -> Any:
    """Copy of obj with sensitive mapping values replaced; strings are scrubbed of signing material."""
    if isinstance(obj, dict):
        return {k: REDACTED if is_sensitive_key(k) else redact_for_log(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(redact_for_log(item) for item in obj)
    if isinstance(obj, str):
        return REDACTED if _is_secret_value(obj) else redact_url(obj)
    return obj
