"""
ULID generation and UTC timestamp utilities (stdlib-only).

Every row written by backplane carries a time-sortable identifier and
UTC timestamps serialized with a fixed precision. Fixed precision matters:
the store compares timestamps as text, so ``to_iso8601`` always emits
microseconds and a ``+00:00`` offset.

Tags:
    timestamps, ulid, utc, datetime, backplane, stdlib-only
"""

from __future__ import annotations

import random
import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Return *dt* as an aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, Crockford base32, time-sortable at millisecond
    resolution.
    """
    timestamp_chars = _encode_base32(int(time.time() * 1000), 10)
    random_part = "".join(random.choices(_ENCODING, k=16))
    return timestamp_chars + random_part


def to_iso8601(dt: datetime | None) -> str | None:
    """Serialize to UTC ISO 8601 text with microsecond precision."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="microseconds")


def from_iso8601(s: str | datetime | None) -> datetime | None:
    """Parse ISO 8601 text (or pass a datetime through) as aware UTC."""
    if s is None or s == "":
        return None
    if isinstance(s, datetime):
        return ensure_utc(s)
    return ensure_utc(datetime.fromisoformat(s))


# Crockford's base32 alphabet
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))
