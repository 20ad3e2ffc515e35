from __future__ import annotations

import json
import re
import unicodedata
from datetime import UTC, date, datetime
from typing import Any

_QUARTER_RE = re.compile(r"\bQ([1-4])\b", re.IGNORECASE)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def normalize_name(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value)
    normalized = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    normalized = normalized.casefold()
    normalized = re.sub(r"[^a-z0-9]+", " ", normalized)
    normalized = re.sub(r"\s+", " ", normalized).strip()
    return normalized


def to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)


def from_json(value: str | None, default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def clip(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def quarter_number(label: str | int | None) -> int | None:
    """Parse ``"Q3"``, ``"q3"``, ``"2026-Q3"`` or ``3`` into ``3``."""
    if label is None:
        return None
    if isinstance(label, int):
        return label if 1 <= label <= 4 else None
    match = _QUARTER_RE.search(label)
    if match:
        return int(match.group(1))
    stripped = label.strip()
    if stripped.isdigit() and 1 <= int(stripped) <= 4:
        return int(stripped)
    return None


def quarter_label(number: int) -> str:
    return f"Q{number}"


def quarter_of(day: date) -> int:
    return (day.month - 1) // 3 + 1


def extract_quarter(text: str | None) -> int | None:
    """First quarter mentioned in free text (``"Target: Q2 2026"`` -> 2)."""
    if not text:
        return None
    match = _QUARTER_RE.search(text)
    return int(match.group(1)) if match else None


def get_path(payload: Any, dotted: str) -> Any:
    current = payload
    for key in dotted.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current
