"""
tests/test_providers.py — Source Adapters & Configuration
==========================================================
Local folders/CSV via ``tmp_path``; HTTP adapters via ``httpx.MockTransport``.
"""

from __future__ import annotations

import os

import httpx
import pytest
from conftest import run_async

from encore.config import EncoreConfig, load_config
from encore.constants import ITEM_FOLDER, ITEM_OTHER, SOURCE_FORM, SOURCE_SPREADSHEET
from encore.engine.properties import PropertyType
from encore.errors import ProviderError, SourceNotFoundError
from encore.providers.base import FieldDefinition
from encore.providers.forms import HttpFormsProvider
from encore.providers.local import LocalFolderProvider, LocalSpreadsheetProvider
from encore.providers.registry import build_providers
from encore.providers.sheets import HttpSpreadsheetProvider

STRING = PropertyType("string", True)
NUMBER = PropertyType("number", False)
BOOLEAN = PropertyType("boolean", False)
DATE = PropertyType("date", False)


# ===========================================================================
# Local filesystem
# ===========================================================================
class TestLocalProviders:
    @pytest.fixture
    def root(self, tmp_path):
        (tmp_path / "rehearsals" / "2026").mkdir(parents=True)
        (tmp_path / "rehearsals" / "jan.csv").write_text(
            "Member ID,First Name,Age\nA1, Ada ,36\n,,\nB2,Bo,n/a\n", encoding="utf-8"
        )
        (tmp_path / "rehearsals" / "notes.txt").write_text("hello", encoding="utf-8")
        return tmp_path

    def test_lists_children_by_kind(self, root):
        items = run_async(LocalFolderProvider(root).list_children("rehearsals"))
        kinds = {item.id: item.kind for item in items}
        assert kinds == {
            "rehearsals/2026": ITEM_FOLDER,
            "rehearsals/jan.csv": SOURCE_SPREADSHEET,
            "rehearsals/notes.txt": ITEM_OTHER,
        }
        sheet_item = next(i for i in items if i.kind == SOURCE_SPREADSHEET)
        assert sheet_item.name == "jan"
        assert sheet_item.created_at.tzinfo is not None

    def test_broken_link_is_left_out(self, root):
        os.symlink(root / "nowhere.csv", root / "rehearsals" / "ghost.csv")
        items = run_async(LocalFolderProvider(root).list_children("rehearsals"))
        assert "rehearsals/ghost.csv" not in {item.id for item in items}
        assert "rehearsals/jan.csv" in {item.id for item in items}

    def test_missing_folder(self, root):
        with pytest.raises(SourceNotFoundError):
            run_async(LocalFolderProvider(root).list_children("nope"))

    def test_path_escape_refused(self, root):
        with pytest.raises(ProviderError):
            run_async(LocalFolderProvider(root / "rehearsals").list_children("../.."))

    def test_fields_are_column_positions(self, root):
        fields = run_async(LocalSpreadsheetProvider(root).list_fields("rehearsals/jan.csv"))
        assert [(f.id, f.title) for f in fields] == [
            ("0", "Member ID"), ("1", "First Name"), ("2", "Age"),
        ]

    def test_records_are_typed_and_blank_rows_skipped(self, root):
        records = run_async(LocalSpreadsheetProvider(root).list_records(
            "rehearsals/jan.csv", {"0": STRING, "1": STRING, "2": NUMBER, "9": STRING}
        ))
        assert records == [
            {"0": "A1", "1": "Ada", "2": 36, "9": None},
            {"0": "B2", "1": "Bo", "2": None, "9": None},
        ]

    def test_missing_sheet(self, root):
        with pytest.raises(SourceNotFoundError):
            run_async(LocalSpreadsheetProvider(root).list_fields("rehearsals/gone.csv"))


# ===========================================================================
# HTTP spreadsheets
# ===========================================================================
def _sheet_transport(status: int = 200, body: str = "") -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        assert "sheet-42" in str(request.url)
        return httpx.Response(status, text=body)
    return httpx.MockTransport(handler)


class TestHttpSpreadsheet:
    def test_reads_csv_export(self):
        provider = HttpSpreadsheetProvider(
            "https://sheets.test/{source_id}.csv",
            transport=_sheet_transport(body="ID,Attending\nA1,yes\nB2,no\n"),
        )
        fields = run_async(provider.list_fields("sheet-42"))
        records = run_async(provider.list_records("sheet-42", {"0": STRING, "1": BOOLEAN}))
        assert [f.title for f in fields] == ["ID", "Attending"]
        assert records == [{"0": "A1", "1": True}, {"0": "B2", "1": False}]

    @pytest.mark.parametrize("status", [404, 410])
    def test_gone_is_source_not_found(self, status):
        provider = HttpSpreadsheetProvider(
            "https://sheets.test/{source_id}.csv", transport=_sheet_transport(status)
        )
        with pytest.raises(SourceNotFoundError):
            run_async(provider.list_fields("sheet-42"))

    def test_server_error_is_provider_error(self):
        provider = HttpSpreadsheetProvider(
            "https://sheets.test/{source_id}.csv", transport=_sheet_transport(503)
        )
        with pytest.raises(ProviderError) as exc_info:
            run_async(provider.list_fields("sheet-42"))
        assert not isinstance(exc_info.value, SourceNotFoundError)
        assert exc_info.value.source_id == "sheet-42"

    def test_network_error_is_provider_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        provider = HttpSpreadsheetProvider(
            "https://sheets.test/{source_id}.csv", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(ProviderError):
            run_async(provider.list_fields("sheet-42"))


# ===========================================================================
# HTTP forms
# ===========================================================================
FORM = {
    "items": [
        {"title": "Member ID", "questionItem": {"question": {
            "questionId": "q1", "textQuestion": {}}}},
        {"title": "Attending?", "questionItem": {"question": {
            "questionId": "q2", "choiceQuestion": {
                "type": "RADIO", "options": [{"value": "Yes"}, {"value": "No"}]}}}},
        {"title": "Section", "questionItem": {"question": {
            "questionId": "q3", "choiceQuestion": {
                "type": "CHECKBOX", "options": [{"value": "Strings"}, {"value": "Brass"}]}}}},
        {"title": "Rating", "questionItem": {"question": {
            "questionId": "q4", "scaleQuestion": {"low": 1, "high": 5}}}},
        {"title": "Birthday", "questionItem": {"question": {
            "questionId": "q5", "dateQuestion": {}}}},
        {"title": "Section header"},
    ]
}

RESPONSES = {
    "responses": [
        {"answers": {
            "q1": {"textAnswers": {"answers": [{"value": "A1"}]}},
            "q2": {"textAnswers": {"answers": [{"value": "Yes"}]}},
            "q5": {"textAnswers": {"answers": [{"value": "1990-04-01"}]}},
        }},
        {"answers": {
            "q1": {"textAnswers": {"answers": [{"value": "B2"}]}},
            "q2": {"textAnswers": {"answers": [{"value": "No"}]}},
        }},
    ]
}


def _forms_transport(form=FORM, responses=RESPONSES, status: int = 200):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if status != 200:
            return httpx.Response(status)
        if request.url.path.endswith("/responses"):
            return httpx.Response(200, json=responses)
        return httpx.Response(200, json=form)

    return httpx.MockTransport(handler), seen


class TestHttpForms:
    def test_fields_skip_non_questions(self):
        transport, seen = _forms_transport()
        provider = HttpFormsProvider("https://forms.test/v1/", token="tkn", transport=transport)
        fields = run_async(provider.list_fields("form-1"))

        assert [(f.id, f.kind) for f in fields] == [
            ("q1", "text"), ("q2", "choice"), ("q3", "multi_choice"),
            ("q4", "scale"), ("q5", "date"),
        ]
        assert seen[0].url.path == "/v1/forms/form-1"
        assert seen[0].headers["Authorization"] == "Bearer tkn"

    def test_records_use_choice_labels_for_booleans(self):
        transport, _ = _forms_transport()
        provider = HttpFormsProvider("https://forms.test/v1", token="", transport=transport)
        records = run_async(provider.list_records(
            "form-1", {"q1": STRING, "q2": BOOLEAN, "q5": DATE}
        ))
        assert records == [
            {"q1": "A1", "q2": True, "q5": "1990-04-01T00:00:00+00:00"},
            {"q1": "B2", "q2": False, "q5": None},
        ]

    def test_empty_form_is_provider_error(self):
        transport, _ = _forms_transport(form={"items": []})
        provider = HttpFormsProvider("https://forms.test/v1", token="", transport=transport)
        with pytest.raises(ProviderError):
            run_async(provider.list_fields("form-1"))

    def test_deleted_form(self):
        transport, _ = _forms_transport(status=404)
        provider = HttpFormsProvider("https://forms.test/v1", token="", transport=transport)
        with pytest.raises(SourceNotFoundError):
            run_async(provider.list_fields("form-1"))

    @pytest.mark.parametrize("definition,ptype,expected", [
        (FieldDefinition("q", "T", "text"), STRING, True),
        (FieldDefinition("q", "T", "text"), NUMBER, False),
        (FieldDefinition("q", "T", "choice", options=("1", "2", "3")), NUMBER, True),
        (FieldDefinition("q", "T", "choice", options=("1", "two")), NUMBER, False),
        (FieldDefinition("q", "T", "choice", options=("2026-01-01", "2026-02-01")), DATE, True),
        (FieldDefinition("q", "T", "choice", options=("Yes", "No")), BOOLEAN, True),
        (FieldDefinition("q", "T", "choice", options=("Yes", "No", "Maybe")), BOOLEAN, False),
        (FieldDefinition("q", "T", "multi_choice", options=("A", "B")), STRING, False),
        (FieldDefinition("q", "T", "scale", low=1, high=2), BOOLEAN, True),
        (FieldDefinition("q", "T", "scale", low=1, high=5), BOOLEAN, False),
        (FieldDefinition("q", "T", "scale", low=1, high=5), NUMBER, True),
        (FieldDefinition("q", "T", "date"), DATE, True),
        (FieldDefinition("q", "T", "time"), DATE, False),
        (FieldDefinition("q", "T", "unsupported"), STRING, False),
    ])
    def test_supports(self, definition, ptype, expected):
        provider = HttpFormsProvider("https://forms.test", token="")
        assert provider.supports(definition, ptype) is expected


# ===========================================================================
# Registry & config
# ===========================================================================
class TestRegistryAndConfig:
    def test_local_defaults(self, tmp_path):
        providers = build_providers(EncoreConfig(data_root=str(tmp_path)))
        assert isinstance(providers.for_kind(SOURCE_SPREADSHEET), LocalSpreadsheetProvider)
        assert providers.for_kind(SOURCE_FORM) is None

    def test_http_adapters_when_configured(self, tmp_path):
        providers = build_providers(EncoreConfig(
            data_root=str(tmp_path),
            forms_api_url="https://forms.test",
            spreadsheet_export_url="https://sheets.test/{source_id}.csv",
        ))
        assert isinstance(providers.for_kind(SOURCE_SPREADSHEET), HttpSpreadsheetProvider)
        assert isinstance(providers.for_kind(SOURCE_FORM), HttpFormsProvider)

    def test_data_root_required(self):
        with pytest.raises(RuntimeError):
            build_providers(EncoreConfig())

    def test_load_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("page_capacity: 10\nunlock_attempts: 5\ndata_root: /srv/encore\n")
        cfg = load_config(path)
        assert cfg.page_capacity == 10
        assert cfg.unlock_attempts == 5
        assert cfg.data_root == "/srv/encore"
        assert cfg.unlock_delay_seconds == 1.0

    def test_invalid_page_capacity(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("page_capacity: 0\n")
        with pytest.raises(ValueError):
            load_config(path)

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")
