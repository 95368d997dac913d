"""Utility helpers for the ReelMatch service."""

from __future__ import annotations

import hashlib
import json
import math
from datetime import datetime, timezone
from typing import Any, Iterable


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, matching stored columns."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def canonical_json(value: Any) -> str:
    """Serialize ``value`` deterministically so equal inputs hash equally."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def collection_snapshot_token(collection_ids: Iterable[str]) -> str:
    """Hash a set of collection identifiers independently of their order."""

    return sha256_hex(",".join(sorted(collection_ids)))


def as_number(value: Any) -> float:
    """Coerce a provider-supplied numeric field, treating anything else as zero."""

    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


def is_tmdb_id(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0
