"""CSV value normalization: handles BOM, stray spaces and loose formats."""

from __future__ import annotations

import re

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def normalize_column_name(name: str) -> str:
    """Normalize a CSV column name.

    - Removes BOM characters (\\ufeff)
    - Replaces runs of whitespace with a single underscore
    - Lowercases
    - Strips anything that is not alphanumeric or underscore
    """
    name = name.replace("\ufeff", "").strip()
    name = re.sub(r"[\s\u00a0]+", "_", name)
    name = name.lower()
    return re.sub(r"[^\w]", "", name, flags=re.UNICODE)


def clean_string(value: str | None) -> str | None:
    """Strip whitespace and return None for empty strings."""
    if value is None:
        return None
    value = value.strip()
    return value if value else None


def parse_tags(raw: str | None) -> frozenset[str]:
    """Parse 'Email, Exchange; VPN' into a set of tags (case preserved)."""
    if not raw:
        return frozenset()
    parts = re.split(r"[,;|]+", raw.strip())
    return frozenset(p.strip() for p in parts if p.strip())


def parse_schedule(raw: str | None) -> list[str]:
    """Split 'mon-fri style' window lists: '0,1,2,3,4@09:00-17:00 | 5@10:00-14:00'."""
    if not raw:
        return []
    return [p.strip() for p in re.split(r"[|\n]+", raw) if p.strip()]


def parse_bool(raw: str | None, default: bool = True) -> bool:
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    return default


def parse_int(raw: str | None, default: int = 0) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        return int(float(raw.strip().replace(",", ".")))
    except ValueError:
        return default


def parse_float(raw: str | None) -> float | None:
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw.strip().replace(",", "."))
    except ValueError:
        return None
