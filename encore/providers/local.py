"""
encore.providers.local — Filesystem folder & CSV spreadsheet adapters
======================================================================

Serves a directory tree as a folder hierarchy.  Folder and source ids are
paths relative to the configured root (``""`` or ``"."`` is the root
itself).  ``*.csv`` files are spreadsheets; their first row is the header
and field ids are column positions (``"0"``, ``"1"``, …).

Disk reads run through :func:`asyncio.to_thread` so a slow volume never
stalls the other audience units.
"""

from __future__ import annotations

import asyncio
import csv
import logging
import stat
from datetime import UTC, datetime
from pathlib import Path

from encore.constants import ITEM_FOLDER, ITEM_OTHER, SOURCE_SPREADSHEET
from encore.engine.properties import PropertyType
from encore.errors import ProviderError, SourceNotFoundError
from encore.providers.base import ContentProvider, FieldDefinition, FolderItem, FolderProvider

logger = logging.getLogger(__name__)


def _resolve(root: Path, relative: str) -> Path:
    """Resolve *relative* under *root*, refusing paths that escape it."""
    try:
        path = (root / relative).resolve()
    except (OSError, RuntimeError) as exc:
        raise ProviderError(f"Cannot resolve {relative!r}: {exc}", relative) from exc
    if path != root and root not in path.parents:
        raise ProviderError(f"Path {relative!r} is outside the data root", relative)
    return path


class LocalFolderProvider(FolderProvider):
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    async def list_children(self, folder_id: str) -> list[FolderItem]:
        return await asyncio.to_thread(self._list_children, folder_id)

    def _list_children(self, folder_id: str) -> list[FolderItem]:
        folder = _resolve(self.root, folder_id)
        items: list[FolderItem] = []
        try:
            if not folder.is_dir():
                raise SourceNotFoundError(f"Folder {folder_id!r} not found", folder_id)
            children = sorted(folder.iterdir(), key=lambda p: p.name)
        except OSError as exc:
            raise ProviderError(f"Cannot list folder {folder_id!r}: {exc}", folder_id) from exc

        for child in children:
            relative = child.relative_to(self.root).as_posix()
            # Broken links or entries removed mid-listing are left out
            try:
                info = child.stat()
            except OSError as exc:
                logger.warning("Skipping unreadable entry %s: %s", relative, exc)
                continue
            if stat.S_ISDIR(info.st_mode):
                kind = ITEM_FOLDER
            elif child.suffix.lower() == ".csv":
                kind = SOURCE_SPREADSHEET
            else:
                kind = ITEM_OTHER
            created = datetime.fromtimestamp(info.st_mtime, tz=UTC)
            items.append(FolderItem(id=relative, name=child.stem, kind=kind, created_at=created))
        return items


class LocalSpreadsheetProvider(ContentProvider):
    kind = SOURCE_SPREADSHEET

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _read_rows(self, source_id: str) -> list[list[str]]:
        path = _resolve(self.root, source_id)
        try:
            if not path.is_file():
                raise SourceNotFoundError(f"Spreadsheet {source_id!r} not found", source_id)
            with open(path, encoding="utf-8", newline="") as fh:
                return [[cell.strip() for cell in row] for row in csv.reader(fh)]
        except (OSError, UnicodeDecodeError, csv.Error) as exc:
            raise ProviderError(f"Cannot read spreadsheet {source_id!r}: {exc}", source_id) from exc

    async def list_fields(self, source_id: str) -> list[FieldDefinition]:
        rows = await asyncio.to_thread(self._read_rows, source_id)
        return header_fields(rows)

    async def list_records(
        self, source_id: str, field_types: dict[str, PropertyType]
    ) -> list[dict[str, object]]:
        rows = await asyncio.to_thread(self._read_rows, source_id)
        return typed_rows(self, rows, field_types)


# ---------------------------------------------------------------------------
# Shared CSV helpers (also used by the HTTP spreadsheet adapter)
# ---------------------------------------------------------------------------
def header_fields(rows: list[list[str]]) -> list[FieldDefinition]:
    if not rows:
        return []
    return [
        FieldDefinition(id=str(index), title=title, kind="column")
        for index, title in enumerate(rows[0])
    ]


def typed_rows(
    provider: ContentProvider, rows: list[list[str]], field_types: dict[str, PropertyType]
) -> list[dict[str, object]]:
    if not rows:
        return []
    definitions = {definition.id: definition for definition in header_fields(rows)}
    records: list[dict[str, object]] = []
    for row in rows[1:]:
        if not any(row):
            continue
        record: dict[str, object] = {}
        for field_id, ptype in field_types.items():
            definition = definitions.get(field_id)
            if definition is None:
                record[field_id] = None
                continue
            index = int(field_id)
            raw = row[index] if index < len(row) else None
            record[field_id] = provider.classify(raw, definition, ptype)
        records.append(record)
    return records
