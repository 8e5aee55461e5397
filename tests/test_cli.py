"""
tests/test_cli.py — Command Line Entry Point
=============================================
"""

from __future__ import annotations

import json
from unittest.mock import patch

from sqlalchemy.orm import Session

from encore.__main__ import main
from encore.database.models import Tenant


def _run(db_engine, capsys, *argv: str) -> tuple[int, dict]:
    with patch("encore.__main__.create_db_engine", return_value=db_engine):
        code = main(["--config", "does-not-exist.yaml", *argv])
    out = capsys.readouterr().out
    return code, json.loads(out) if out else {}


class TestCli:
    def test_create_tenant(self, db_engine, capsys):
        code, output = _run(db_engine, capsys, "create-tenant", "Brass Band", "--invited")
        assert code == 0
        with Session(db_engine) as session:
            assert session.get(Tenant, output["tenant_id"]).name == "Brass Band"

    def test_refresh_quotas(self, db_engine, capsys, tenant_id):
        code, output = _run(db_engine, capsys, "refresh-quotas")
        assert code == 0
        assert output == {"invited": 1, "uninvited": 0}

    def test_unlock_stale(self, db_engine, capsys):
        code, output = _run(db_engine, capsys, "unlock-stale")
        assert code == 0
        assert output == {"unlocked": 0, "tenant_ids": []}

    def test_sync_unknown_tenant_exit_code(self, db_engine, capsys, tmp_path):
        config = tmp_path / "config.yaml"
        config.write_text(f"data_root: {tmp_path}\n")
        with patch("encore.__main__.create_db_engine", return_value=db_engine):
            assert main(["--config", str(config), "sync", "missing"]) == 2
