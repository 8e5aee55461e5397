"""
encore.config — YAML Configuration Loader
==========================================

Reads ``config.yaml`` for runtime tuning (bucket page size, lock release
policy, provider roots).  Connection strings and tokens stay in ``.env``.

Usage::

    from encore.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.page_capacity)     # 30
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from encore.constants import MAX_PAGE_SIZE


@dataclass(frozen=True, slots=True)
class EncoreConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Persistence
    page_capacity: int = MAX_PAGE_SIZE

    # Lock lifecycle
    unlock_attempts: int = 3
    unlock_delay_seconds: float = 1.0
    max_sync_duration_minutes: int = 60

    # Optional collaborators
    report_directory: str | None = None
    data_root: str | None = None
    forms_api_url: str | None = None
    spreadsheet_export_url: str | None = None


def load_config(path: str | Path = "config.yaml") -> EncoreConfig:
    """Read *path* and return an :class:`EncoreConfig` instance.

    Every key is optional; absent keys keep their defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If ``page_capacity`` or ``unlock_attempts`` is not positive.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    cfg = EncoreConfig(
        page_capacity=int(raw.get("page_capacity", MAX_PAGE_SIZE)),
        unlock_attempts=int(raw.get("unlock_attempts", 3)),
        unlock_delay_seconds=float(raw.get("unlock_delay_seconds", 1.0)),
        max_sync_duration_minutes=int(raw.get("max_sync_duration_minutes", 60)),
        report_directory=raw.get("report_directory") or None,
        data_root=raw.get("data_root") or None,
        forms_api_url=raw.get("forms_api_url") or None,
        spreadsheet_export_url=raw.get("spreadsheet_export_url") or None,
    )
    if cfg.page_capacity < 1:
        raise ValueError("page_capacity must be at least 1")
    if cfg.unlock_attempts < 1:
        raise ValueError("unlock_attempts must be at least 1")
    return cfg
