"""
encore.providers.sheets — Spreadsheets fetched as CSV over HTTP
================================================================

Pulls a published spreadsheet's CSV export.  The source id is substituted
into ``export_url``; the header row names the fields and field ids are
column positions, same as the local CSV adapter.
"""

from __future__ import annotations

import csv
import io
import logging

import httpx

from encore.constants import SOURCE_SPREADSHEET
from encore.engine.properties import PropertyType
from encore.errors import ProviderError, SourceNotFoundError
from encore.providers.base import ContentProvider, FieldDefinition
from encore.providers.local import header_fields, typed_rows

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_URL = "https://docs.google.com/spreadsheets/d/{source_id}/gviz/tq?tqx=out:csv"


class HttpSpreadsheetProvider(ContentProvider):
    kind = SOURCE_SPREADSHEET

    def __init__(
        self,
        export_url: str = DEFAULT_EXPORT_URL,
        timeout: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.export_url = export_url
        self.timeout = timeout
        self._transport = transport

    async def _fetch_rows(self, source_id: str) -> list[list[str]]:
        url = self.export_url.format(source_id=source_id)
        transport = self._transport or httpx.AsyncHTTPTransport(retries=1)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=transport) as client:
                resp = await client.get(url)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Fetching spreadsheet {source_id} failed: {exc}", source_id) from exc

        if resp.status_code in (404, 410):
            raise SourceNotFoundError(f"Spreadsheet {source_id} no longer exists", source_id)
        if resp.status_code != 200:
            raise ProviderError(
                f"Spreadsheet {source_id} returned HTTP {resp.status_code}", source_id
            )

        try:
            reader = csv.reader(io.StringIO(resp.text))
            return [[cell.strip() for cell in row] for row in reader]
        except csv.Error as exc:
            raise ProviderError(f"Spreadsheet {source_id} is not valid CSV: {exc}", source_id) from exc

    async def list_fields(self, source_id: str) -> list[FieldDefinition]:
        return header_fields(await self._fetch_rows(source_id))

    async def list_records(
        self, source_id: str, field_types: dict[str, PropertyType]
    ) -> list[dict[str, object]]:
        rows = await self._fetch_rows(source_id)
        logger.debug("Spreadsheet %s: %d data rows", source_id, max(len(rows) - 1, 0))
        return typed_rows(self, rows, field_types)
