"""UHRP content pointers: Base58Check of the SHA-256 digest with a two-byte 0xce00 prefix."""
from __future__ import annotations

import hashlib
from typing import Iterable

import base58

POINTER_PREFIX = bytes.fromhex("ce00")
_SCHEMES = ("web+uhrp://", "uhrp://", "uhrp:")


def pointer_for_digest(digest: bytes) -> str:
    if len(digest) != 32:
        raise ValueError("Hash length must be 32 bytes (sha256)")
    return base58.b58encode_check(POINTER_PREFIX + digest).decode("ascii")


def pointer_for_chunks(chunks: Iterable[bytes]) -> tuple[str, int]:
    """Hash a byte stream chunk by chunk. Returns (pointer, total bytes read)."""
    h = hashlib.sha256()
    total = 0
    for chunk in chunks:
        h.update(chunk)
        total += len(chunk)
    return pointer_for_digest(h.digest()), total


def digest_from_pointer(pointer: str) -> bytes:
    """Inverse of pointer_for_digest; accepts uhrp:// style prefixes. Raises ValueError if invalid."""
    text = pointer.strip()
    for scheme in _SCHEMES:
        if text.lower().startswith(scheme):
            text = text[len(scheme):]
            break
    payload = base58.b58decode_check(text)
    if payload[:2] != POINTER_PREFIX or len(payload) != 34:
        raise ValueError(f"Not a UHRP pointer: {pointer}")
    return payload[2:]
