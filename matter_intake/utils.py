"""Shared utilities used across the matter intake engine."""

import json
import re
from datetime import datetime, timezone
from typing import Any, Optional


def normalize_phone(value: str) -> str:
    """Normalize a phone number by stripping everything except digits and a leading +.

    Examples:
        >>> normalize_phone("555-123-4567")
        '5551234567'
        >>> normalize_phone("+1 (555) 123-4567")
        '+15551234567'
    """
    value = value.strip()
    if value.startswith("+"):
        return "+" + re.sub(r"[^\d]", "", value[1:])
    return re.sub(r"[^\d]", "", value)


def normalize_text(value: str) -> str:
    """Casefold and collapse whitespace for case-insensitive comparisons."""
    return " ".join(value.split()).casefold()


def canonical_json(payload: Any) -> str:
    """Serialize a payload deterministically (sorted keys, compact separators)."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """RFC 3339 timestamp in UTC with a trailing Z."""
    moment = moment or utc_now()
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
