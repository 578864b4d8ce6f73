"""Custom metadata normalization shared by the in-place and copy-based update paths."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. 2024-01-01T00:05:00.000Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def _to_metadata_value(value: Any) -> str:
    if isinstance(value, datetime):
        return format_timestamp(value)
    return str(value)


def normalize_metadata_patch(patch: Mapping[str, Any]) -> dict[str, str]:
    """Lower-case keys and stringify values; None values are dropped. customTime becomes customtime."""
    out: dict[str, str] = {}
    for key, value in patch.items():
        if value is None:
            continue
        out[str(key).lower()] = _to_metadata_value(value)
    return out


def merge_metadata(current: Mapping[str, str], patch: Mapping[str, Any]) -> dict[str, str]:
    """Merge patch over current metadata. Patch wins on key collision; all keys lower-cased."""
    merged = {str(k).lower(): str(v) for k, v in current.items()}
    merged.update(normalize_metadata_patch(patch))
    return merged


def parse_custom_time(value: str) -> datetime:
    """Parse an ISO-8601 customtime (trailing Z accepted). Raises ValueError if malformed."""
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
