"""
encore.engine.properties — Member property types & value classification
=========================================================================

A tenant's member schema maps each property name to a type string such as
``"string!"`` or ``"date?"``: a base type followed by ``!`` (required) or
``?`` (optional).

:func:`classify_value` turns a raw provider value into the stored Python
value for a property type, returning ``None`` when the value cannot be
represented.  Providers call it per cell so one bad value never fails a
whole read.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, date, datetime

from dateutil import parser as dateparser

from encore.errors import SchemaError

BASE_TYPES: frozenset[str] = frozenset({"string", "number", "boolean", "date"})

_TRUE_WORDS = frozenset({"true", "yes", "y", "1", "x", "checked"})
_FALSE_WORDS = frozenset({"false", "no", "n", "0", "unchecked"})


@dataclass(frozen=True, slots=True)
class PropertyType:
    """Parsed form of a schema entry like ``"number?"``."""

    base: str
    required: bool

    @classmethod
    def parse(cls, raw: str) -> PropertyType:
        if not raw or raw[-1] not in "!?":
            raise SchemaError(f"Property type {raw!r} must end with '!' or '?'")
        base = raw[:-1]
        if base not in BASE_TYPES:
            raise SchemaError(f"Unknown property base type {base!r}")
        return cls(base=base, required=raw.endswith("!"))

    def __str__(self) -> str:
        return f"{self.base}{'!' if self.required else '?'}"


def parse_schema(raw: dict[str, str]) -> dict[str, PropertyType]:
    """Parse a tenant's ``member_property_types`` column."""
    return {name: PropertyType.parse(spec) for name, spec in raw.items()}


def required_properties(schema: dict[str, PropertyType]) -> list[str]:
    return [name for name, ptype in schema.items() if ptype.required]


# ---------------------------------------------------------------------------
# Value classification
# ---------------------------------------------------------------------------
def parse_date(raw) -> datetime | None:
    """Leniently parse *raw* into an aware UTC datetime, or ``None``."""
    if isinstance(raw, datetime):
        return as_utc(raw)
    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day, tzinfo=UTC)
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        return as_utc(dateparser.parse(raw.strip()))
    except (ValueError, OverflowError):
        return None


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def classify_value(raw, ptype: PropertyType, boolean_labels: tuple | None = None):
    """Convert *raw* to the Python value stored for *ptype*, or ``None``.

    *boolean_labels* is an optional ``(true_label, false_label)`` pair for
    sources whose booleans are two named choices.
    """
    if raw is None:
        return None
    text = raw.strip() if isinstance(raw, str) else raw

    if ptype.base == "string":
        if isinstance(text, str):
            return text or None
        return str(text)

    if ptype.base == "number":
        if isinstance(text, bool):
            return None
        if isinstance(text, (int, float)):
            return text
        try:
            number = float(text)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(number):
            return None
        return int(number) if number.is_integer() else number

    if ptype.base == "boolean":
        if isinstance(text, bool):
            return text
        if boolean_labels is not None:
            if str(text) == str(boolean_labels[0]):
                return True
            if str(text) == str(boolean_labels[1]):
                return False
            return None
        word = str(text).lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        return None

    if ptype.base == "date":
        parsed = parse_date(text)
        return parsed.isoformat() if parsed else None

    return None
