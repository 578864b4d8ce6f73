"""Resolve a content pointer and owner to the freshest live advertisement and its object metadata."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

from cdn_gateway.core.errors import AdvertisementExpiredError, NoAdvertisementFoundError
from cdn_gateway.core.metrics import record_resolution
from cdn_gateway.services.advertisements import (
    EXPIRY_TAG_PREFIX,
    OBJECT_IDENTIFIER_TAG_PREFIX,
    AdvertisementRecord,
    AdvertisementStore,
    decode_hex_tag,
    owner_tag,
    pointer_tag,
)
from cdn_gateway.services.storage.base import StorageBackend, storage_key_for

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 200


class ResolvedObject(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    object_identifier: str = Field(alias="objectIdentifier")
    storage_key: str = Field(alias="storageKey")
    size: int
    content_type: str = Field(alias="contentType")
    # minutes since the epoch
    expiry_time: int = Field(alias="expiryTime")


@dataclass(frozen=True)
class Candidate:
    object_identifier: str
    expiry_seconds: int


def parse_expiry(value: str) -> int:
    """Decimal seconds; anything unparsable counts as 0 (already expired)."""
    try:
        return int(value.strip())
    except (ValueError, AttributeError):
        return 0


def candidate_from_record(record: AdvertisementRecord) -> Candidate | None:
    """None unless the record has both an object identifier tag and an expiry tag."""
    id_hex = record.find_tag(OBJECT_IDENTIFIER_TAG_PREFIX)
    expiry_raw = record.find_tag(EXPIRY_TAG_PREFIX)
    if id_hex is None or expiry_raw is None:
        return None
    try:
        object_identifier = decode_hex_tag(id_hex)
    except ValueError:
        logger.warning("skipping advertisement with undecodable object identifier tag %r", id_hex)
        return None
    if not object_identifier:
        return None
    return Candidate(object_identifier=object_identifier, expiry_seconds=parse_expiry(expiry_raw))


def select_freshest(records: list[AdvertisementRecord]) -> Candidate | None:
    """Greatest expiry wins; equal expiries go to the lexicographically smallest identifier."""
    best: Candidate | None = None
    for record in records:
        candidate = candidate_from_record(record)
        if candidate is None:
            continue
        if best is None or candidate.expiry_seconds > best.expiry_seconds:
            best = candidate
        elif (
            candidate.expiry_seconds == best.expiry_seconds
            and candidate.object_identifier < best.object_identifier
        ):
            best = candidate
    return best


class AdvertisementResolver:
    """Stateless per call; holds read-only handles to the backend and the advertisement store."""

    def __init__(
        self,
        storage: StorageBackend,
        advertisements: AdvertisementStore,
        clock: Callable[[], float] = time.time,
        default_limit: int = DEFAULT_LIMIT,
    ) -> None:
        self._storage = storage
        self._advertisements = advertisements
        self._clock = clock
        self.default_limit = default_limit

    def resolve(
        self,
        pointer: str,
        uploader_identity_key: str,
        limit: int | None = None,
        offset: int | None = None,
    ) -> ResolvedObject:
        records = self._advertisements.list_advertisements(
            [pointer_tag(pointer), owner_tag(uploader_identity_key)],
            limit=limit if limit is not None else self.default_limit,
            offset=offset if offset is not None else 0,
        )
        winner = select_freshest(records)
        if winner is None:
            record_resolution("not_found")
            raise NoAdvertisementFoundError(
                f"No advertisement found for uhrpUrl: {pointer} uploaderIdentityKey: {uploader_identity_key}",
                {"pointer": pointer},
            )
        if winner.expiry_seconds < self._clock():
            record_resolution("expired")
            raise AdvertisementExpiredError(
                f"Advertisement for uhrpUrl: {pointer} has expired",
                {"pointer": pointer, "expiry_time": str(winner.expiry_seconds)},
            )
        key = storage_key_for(winner.object_identifier)
        metadata = self._storage.get_metadata(key)
        record_resolution("found")
        return ResolvedObject(
            object_identifier=winner.object_identifier,
            storage_key=key,
            size=metadata.size,
            content_type=metadata.content_type,
            expiry_time=winner.expiry_seconds // 60,
        )
