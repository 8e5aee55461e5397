"""
encore.providers.base — Source adapter contracts
=================================================

The sync engine reads the outside world through two small interfaces:

* :class:`FolderProvider` — lists the immediate children of a folder.
* :class:`ContentProvider` — one per source kind (spreadsheet, form);
  lists a source's field definitions and its submitted records.

Adapters raise :class:`~encore.errors.ProviderError` when a source cannot
be read, and :class:`~encore.errors.SourceNotFoundError` when it is gone
for good.  Individual values that don't fit the requested property type
come back as ``None``; they never fail the whole call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

from encore.engine.properties import PropertyType, classify_value


@dataclass(frozen=True, slots=True)
class FolderItem:
    """One child of a folder."""

    id: str
    name: str
    kind: str  # "folder" | "spreadsheet" | "form" | "other"
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class FieldDefinition:
    """A column or question exposed by a content source.

    ``kind`` is provider-specific (``"column"`` for spreadsheets; ``"text"``,
    ``"choice"``, ``"scale"``, ``"date"``, ``"time"`` for forms).
    """

    id: str
    title: str
    kind: str = "column"
    options: tuple[str, ...] = field(default_factory=tuple)
    low: int | None = None
    high: int | None = None


class FolderProvider(ABC):
    @abstractmethod
    async def list_children(self, folder_id: str) -> list[FolderItem]:
        """Immediate children of *folder_id*."""


class ContentProvider(ABC):
    """Reads fields and records from one kind of content source."""

    kind: str = ""

    @abstractmethod
    async def list_fields(self, source_id: str) -> list[FieldDefinition]:
        """Field definitions of *source_id*, in source order."""

    @abstractmethod
    async def list_records(
        self, source_id: str, field_types: dict[str, PropertyType]
    ) -> list[dict[str, object]]:
        """Submitted records, each ``{field_id: typed value or None}``.

        Only fields named in *field_types* are returned.
        """

    def supports(self, definition: FieldDefinition, ptype: PropertyType) -> bool:
        """Whether *definition* can feed a property of type *ptype*."""
        return True

    def boolean_labels(self, definition: FieldDefinition) -> tuple | None:
        return None

    def classify(self, raw, definition: FieldDefinition, ptype: PropertyType):
        return classify_value(raw, ptype, self.boolean_labels(definition))
