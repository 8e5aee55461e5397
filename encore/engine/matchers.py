"""
encore.engine.matchers — Field title → member property matching
================================================================

Tenants keep an ordered list of matchers.  When a source exposes a field
that has no mapping yet, the first matcher whose expression matches the
field title decides which member property the field feeds.

Expressions are checked when a matcher is parsed; a stored matcher whose
expression does not compile is skipped with a warning instead of failing
every sync for the tenant.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache

from encore.errors import SchemaError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=256)
def _compile(regex: str, flags: int) -> re.Pattern:
    return re.compile(regex, flags)


@dataclass(frozen=True, slots=True)
class FieldMatcher:
    expression: str
    property: str
    condition: str = "contains"  # "contains" | "exact"
    filters: tuple[str, ...] = field(default_factory=tuple)
    priority: int = 0

    @classmethod
    def from_dict(cls, raw: dict) -> FieldMatcher:
        """Build a matcher, raising :class:`SchemaError` if it cannot match."""
        condition = raw.get("condition", "contains")
        if condition not in ("contains", "exact"):
            raise SchemaError(f"Unknown matcher condition {condition!r}")
        matcher = cls(
            expression=raw["expression"],
            property=raw["property"],
            condition=condition,
            filters=tuple(raw.get("filters") or ()),
            priority=int(raw.get("priority", 0)),
        )
        matcher.pattern()
        return matcher

    def to_dict(self) -> dict:
        return {
            "condition": self.condition,
            "expression": self.expression,
            "property": self.property,
            "filters": list(self.filters),
            "priority": self.priority,
        }

    @property
    def key(self) -> str:
        """Identifies the matcher in stored field maps; independent of list order."""
        return f"{self.condition}:{self.expression}:{self.property}"

    def pattern(self) -> re.Pattern:
        regex = self.expression
        if self.condition == "exact":
            if not regex.startswith("^"):
                regex = "^" + regex
            if not regex.endswith("$"):
                regex = regex + "$"
        flags = re.IGNORECASE if "nocase" in self.filters else 0
        try:
            return _compile(regex, flags)
        except re.error as exc:
            raise SchemaError(f"Invalid matcher expression {self.expression!r}: {exc}") from exc

    def matches(self, title: str) -> bool:
        try:
            return self.pattern().search(title) is not None
        except SchemaError as exc:
            logger.warning("%s; treating it as no match", exc)
            return False


def parse_matchers(raw: list[dict]) -> list[FieldMatcher]:
    """Parse the tenant column, ordered by ascending priority (stable).

    Entries that do not parse are left out.
    """
    matchers = []
    for item in raw:
        try:
            matchers.append(FieldMatcher.from_dict(item))
        except (SchemaError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping field matcher %r: %s", item, exc)
    return sorted(matchers, key=lambda m: m.priority)


def match_field(matchers: list[FieldMatcher], title: str) -> FieldMatcher | None:
    """The first matcher that matches *title*, or ``None``."""
    for matcher in matchers:
        if matcher.matches(title):
            return matcher
    return None
