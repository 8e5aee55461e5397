"""
encore.providers.registry — Adapter wiring
===========================================

Bundles the folder adapter with one content adapter per source kind, and
builds the default bundle from :class:`~encore.config.EncoreConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from encore.config import EncoreConfig
from encore.constants import SOURCE_FORM, SOURCE_SPREADSHEET
from encore.providers.base import ContentProvider, FolderProvider
from encore.providers.forms import HttpFormsProvider
from encore.providers.local import LocalFolderProvider, LocalSpreadsheetProvider
from encore.providers.sheets import HttpSpreadsheetProvider


@dataclass
class ProviderSet:
    folders: FolderProvider
    content: dict[str, ContentProvider] = field(default_factory=dict)

    def for_kind(self, kind: str) -> ContentProvider | None:
        return self.content.get(kind)


def build_providers(cfg: EncoreConfig) -> ProviderSet:
    """Local folders + CSV spreadsheets under ``data_root``; forms when configured."""
    if not cfg.data_root:
        raise RuntimeError("data_root is not set in config.yaml; no folder provider available")

    content: dict[str, ContentProvider] = {}
    if cfg.spreadsheet_export_url:
        content[SOURCE_SPREADSHEET] = HttpSpreadsheetProvider(cfg.spreadsheet_export_url)
    else:
        content[SOURCE_SPREADSHEET] = LocalSpreadsheetProvider(cfg.data_root)
    if cfg.forms_api_url:
        content[SOURCE_FORM] = HttpFormsProvider(cfg.forms_api_url)
    return ProviderSet(folders=LocalFolderProvider(cfg.data_root), content=content)
