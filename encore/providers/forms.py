"""
encore.providers.forms — Form sources over a JSON API
======================================================

Talks to a forms service that exposes::

    GET {base}/forms/{form_id}             → {"items": [...]}
    GET {base}/forms/{form_id}/responses   → {"responses": [...]}

Items and responses follow the Google Forms v1 resource shapes.  Question
kinds decide which member property types a question can feed:

============  ==========================================================
text          string
choice        string; number / date if every option parses; boolean if
              there are exactly two options (first = true)
scale         string, number; boolean if the scale is exactly 1–2
date          string, date
time          string
============  ==========================================================

Multi-select (checkbox) choices and any other question kind feed nothing.
"""

from __future__ import annotations

import logging
import os

import httpx

from encore.constants import SOURCE_FORM
from encore.engine.properties import PropertyType, classify_value, parse_date
from encore.errors import ProviderError, SourceNotFoundError
from encore.providers.base import ContentProvider, FieldDefinition

logger = logging.getLogger(__name__)

_SINGLE_CHOICE_TYPES = frozenset({"RADIO", "DROP_DOWN"})

_ALLOWED_BASES: dict[str, frozenset[str]] = {
    "text": frozenset({"string"}),
    "choice": frozenset({"string", "number", "date", "boolean"}),
    "scale": frozenset({"string", "number", "boolean"}),
    "date": frozenset({"string", "date"}),
    "time": frozenset({"string"}),
}


def _definition_from_item(item: dict) -> FieldDefinition | None:
    title = item.get("title")
    question = (item.get("questionItem") or {}).get("question") or {}
    question_id = question.get("questionId")
    if not title or not question_id:
        return None

    if "textQuestion" in question:
        return FieldDefinition(id=question_id, title=title, kind="text")
    if "choiceQuestion" in question:
        choice = question["choiceQuestion"]
        kind = "choice" if choice.get("type") in _SINGLE_CHOICE_TYPES else "multi_choice"
        options = tuple(
            str(option["value"]) for option in choice.get("options", []) if option.get("value")
        )
        return FieldDefinition(id=question_id, title=title, kind=kind, options=options)
    if "scaleQuestion" in question:
        scale = question["scaleQuestion"]
        return FieldDefinition(
            id=question_id, title=title, kind="scale",
            low=scale.get("low"), high=scale.get("high"),
        )
    if "dateQuestion" in question:
        return FieldDefinition(id=question_id, title=title, kind="date")
    if "timeQuestion" in question:
        return FieldDefinition(id=question_id, title=title, kind="time")
    return FieldDefinition(id=question_id, title=title, kind="unsupported")


class HttpFormsProvider(ContentProvider):
    kind = SOURCE_FORM

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token if token is not None else os.getenv("FORMS_API_TOKEN") or None
        self.timeout = timeout
        self._transport = transport

    async def _get_json(self, path: str, source_id: str) -> dict:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=transport) as client:
                resp = await client.get(f"{self.base_url}{path}", headers=headers)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Form {source_id} request failed: {exc}", source_id) from exc

        if resp.status_code in (404, 410):
            raise SourceNotFoundError(f"Form {source_id} no longer exists", source_id)
        if resp.status_code != 200:
            raise ProviderError(f"Form {source_id} returned HTTP {resp.status_code}", source_id)
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError(f"Form {source_id} returned invalid JSON", source_id) from exc

    async def list_fields(self, source_id: str) -> list[FieldDefinition]:
        payload = await self._get_json(f"/forms/{source_id}", source_id)
        items = payload.get("items")
        if not items:
            raise ProviderError(f"Form {source_id} has no questions", source_id)
        definitions = []
        for item in items:
            definition = _definition_from_item(item)
            if definition is not None:
                definitions.append(definition)
        return definitions

    async def list_records(
        self, source_id: str, field_types: dict[str, PropertyType]
    ) -> list[dict[str, object]]:
        definitions = {d.id: d for d in await self.list_fields(source_id)}
        payload = await self._get_json(f"/forms/{source_id}/responses", source_id)

        records: list[dict[str, object]] = []
        for response in payload.get("responses") or []:
            answers = response.get("answers") or {}
            record: dict[str, object] = {}
            for field_id, ptype in field_types.items():
                definition = definitions.get(field_id)
                raw = _first_answer(answers.get(field_id))
                if definition is None or raw is None:
                    record[field_id] = None
                    continue
                record[field_id] = self.classify(raw, definition, ptype)
            records.append(record)
        return records

    # -----------------------------------------------------------------------
    # Type rules
    # -----------------------------------------------------------------------
    def supports(self, definition: FieldDefinition, ptype: PropertyType) -> bool:
        if ptype.base not in _ALLOWED_BASES.get(definition.kind, frozenset()):
            return False

        if definition.kind == "choice":
            if ptype.base == "number":
                return all(
                    classify_value(option, ptype) is not None for option in definition.options
                )
            if ptype.base == "date":
                return all(parse_date(option) is not None for option in definition.options)
            if ptype.base == "boolean":
                return len(definition.options) == 2

        if definition.kind == "scale" and ptype.base == "boolean":
            return definition.low == 1 and definition.high == 2

        return True

    def boolean_labels(self, definition: FieldDefinition) -> tuple | None:
        if definition.kind == "choice" and len(definition.options) == 2:
            return definition.options[0], definition.options[1]
        if definition.kind == "scale":
            return str(definition.high), str(definition.low)
        return None


def _first_answer(answer: dict | None) -> str | None:
    if not answer:
        return None
    values = (answer.get("textAnswers") or {}).get("answers") or []
    if not values:
        return None
    return values[0].get("value")
