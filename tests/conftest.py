"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest
from sqlalchemy import Engine, create_engine

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from encore.constants import ITEM_FOLDER, SOURCE_SPREADSHEET
from encore.database.models import Base
from encore.errors import ProviderError, SourceNotFoundError
from encore.providers.base import ContentProvider, FolderItem, FolderProvider
from encore.providers.local import header_fields, typed_rows
from encore.providers.registry import ProviderSet
from encore.services import tenant_service


@compiles(PG_JSONB, "sqlite")
def _compile_jsonb_as_text(type_, compiler, **kw):
    return "TEXT"


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Encore tables.

    StaticPool keeps a single connection so ``asyncio.to_thread`` workers
    (``run_db``) see the same in-memory database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def tenant_id(db_engine) -> str:
    """An invited-plan tenant with the default member schema."""
    return tenant_service.create_tenant(db_engine, "City Orchestra", has_invite_code=True)


# ---------------------------------------------------------------------------
# In-memory providers
# ---------------------------------------------------------------------------
def folder(folder_id: str) -> FolderItem:
    return FolderItem(id=folder_id, name=folder_id.rsplit("/", 1)[-1], kind=ITEM_FOLDER)


def sheet(source_id: str, name: str | None = None, day: int = 1) -> FolderItem:
    return FolderItem(
        id=source_id,
        name=name or source_id,
        kind=SOURCE_SPREADSHEET,
        created_at=datetime(2026, 1, day, 18, 0, tzinfo=UTC),
    )


class FakeFolderProvider(FolderProvider):
    """Folder tree held in a dict; records every listing call."""

    def __init__(self, tree: dict[str, list[FolderItem]], failing: set[str] | None = None):
        self.tree = tree
        self.failing = failing or set()
        self.calls: list[str] = []

    async def list_children(self, folder_id: str) -> list[FolderItem]:
        self.calls.append(folder_id)
        if folder_id in self.failing:
            raise ProviderError(f"listing {folder_id} timed out", folder_id)
        if folder_id not in self.tree:
            raise SourceNotFoundError(f"no folder {folder_id}", folder_id)
        return list(self.tree[folder_id])


class FakeSheetProvider(ContentProvider):
    """Spreadsheets as lists of rows; the first row is the header."""

    kind = SOURCE_SPREADSHEET

    def __init__(
        self,
        sheets: dict[str, list[list[str]]],
        failing: set[str] | None = None,
        delays: dict[str, float] | None = None,
    ):
        self.sheets = sheets
        self.failing = failing or set()
        # source id → seconds to wait before answering list_records
        self.delays = delays or {}

    def _rows(self, source_id: str) -> list[list[str]]:
        if source_id in self.failing:
            raise ProviderError(f"reading {source_id} failed", source_id)
        if source_id not in self.sheets:
            raise SourceNotFoundError(f"no sheet {source_id}", source_id)
        return self.sheets[source_id]

    async def list_fields(self, source_id):
        return header_fields(self._rows(source_id))

    async def list_records(self, source_id, field_types):
        await asyncio.sleep(self.delays.get(source_id, 0))
        return typed_rows(self, self._rows(source_id), field_types)


HEADER = ["Member ID", "First Name", "Last Name", "Email", "Birthday"]


def roster(*people: tuple[str, ...]) -> list[list[str]]:
    """A sheet with the default header and one row per person."""
    return [list(HEADER)] + [list(person) for person in people]


def make_providers(
    tree, sheets, failing_folders=None, failing_sheets=None, delays=None
) -> ProviderSet:
    return ProviderSet(
        folders=FakeFolderProvider(tree, failing_folders),
        content={SOURCE_SPREADSHEET: FakeSheetProvider(sheets, failing_sheets, delays)},
    )
