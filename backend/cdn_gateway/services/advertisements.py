"""Advertisement store boundary: tag encoding and an HTTP wallet client for listOutputs lookups."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import httpx

from cdn_gateway.core.config import Settings
from cdn_gateway.core.errors import ConfigurationError, TransientBackendError

POINTER_TAG_PREFIX = "uhrp_url_"
OWNER_TAG_PREFIX = "uploader_identity_key_"
OBJECT_IDENTIFIER_TAG_PREFIX = "object_identifier_"
EXPIRY_TAG_PREFIX = "expiry_time_"


def pointer_tag(pointer: str) -> str:
    return f"{POINTER_TAG_PREFIX}{pointer.encode('utf-8').hex()}"


def owner_tag(uploader_identity_key: str) -> str:
    return f"{OWNER_TAG_PREFIX}{uploader_identity_key}"


def object_identifier_tag(object_identifier: str) -> str:
    return f"{OBJECT_IDENTIFIER_TAG_PREFIX}{object_identifier.encode('utf-8').hex()}"


def expiry_tag(expiry_seconds: int) -> str:
    return f"{EXPIRY_TAG_PREFIX}{expiry_seconds}"


def decode_hex_tag(value: str) -> str:
    return bytes.fromhex(value).decode("utf-8")


@dataclass
class AdvertisementRecord:
    tags: list[str] = field(default_factory=list)

    def find_tag(self, prefix: str) -> str | None:
        """Value of the first tag with prefix (prefix stripped), or None."""
        for tag in self.tags:
            if tag.startswith(prefix):
                return tag[len(prefix):]
        return None


@runtime_checkable
class AdvertisementStore(Protocol):
    """Returns records carrying every tag in tags (all-tags match)."""

    def list_advertisements(self, tags: list[str], limit: int = 200, offset: int = 0) -> list[AdvertisementRecord]: ...


class WalletAdvertisementStore:
    """Queries the advertisement basket of an HTTP wallet (POST {wallet_url}/listOutputs)."""

    def __init__(
        self,
        wallet_url: str,
        basket: str = "uhrp advertisements",
        originator: str = "uhrp-cdn-gateway",
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not wallet_url:
            raise ConfigurationError("wallet_url is required for advertisement lookups")
        self.basket = basket
        self.originator = originator
        self._client = client or httpx.Client(base_url=wallet_url.rstrip("/"), timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "WalletAdvertisementStore":
        return cls(
            wallet_url=settings.wallet_url or "",
            basket=settings.advertisement_basket,
            originator=settings.wallet_originator,
        )

    def list_advertisements(self, tags: list[str], limit: int = 200, offset: int = 0) -> list[AdvertisementRecord]:
        body = {
            "basket": self.basket,
            "tags": list(tags),
            "tagQueryMode": "all",
            "includeTags": True,
            "limit": limit,
            "offset": offset,
        }
        try:
            r = self._client.post("/listOutputs", json=body, headers={"Originator": self.originator})
        except httpx.TransportError as e:
            raise TransientBackendError(f"Wallet unreachable: {e}") from e
        if r.status_code >= 500 or r.status_code == 429:
            raise TransientBackendError(f"Wallet listOutputs failed with {r.status_code}")
        r.raise_for_status()
        outputs = r.json().get("outputs") or []
        return [AdvertisementRecord(tags=list(out.get("tags") or [])) for out in outputs]

    def close(self) -> None:
        self._client.close()
