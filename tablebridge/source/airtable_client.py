# ==============================================
# AirtableSource
# ==============================================
#
# PURPOSE:
#   RecordSource over the Airtable REST API.
#     - Field definitions come from the base metadata endpoint
#     - Records are paged with the "offset" cursor
#     - 429 and 5xx responses are retried with backoff
#
# CLASS: AirtableSource
# ---------------------
#   Constructor:
#   ------------
#   - __init__(token, base_id, *, session=None, base_url=..., timeout_s=30,
#              page_size=100, max_retries=5, min_backoff_s=0.8, max_backoff_s=20.0)
#
#   Methods:
#   --------
#   - list_tables() -> list[str]
#   - list_fields(table) -> list[FieldDefinition]
#       linkedTableId options are resolved to linkedTableName.
#   - page_records(table, cursor=None) -> RecordPage
#
# ==============================================

import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from loguru import logger

from tablebridge.errors import SourceError
from tablebridge.mapping.models import FieldDefinition
from tablebridge.source.base import RecordPage, RecordSource


class AirtableSource(RecordSource):
    """HTTP client for one Airtable base."""

    def __init__(
        self,
        token: str,
        base_id: str,
        *,
        session: Optional[requests.Session] = None,
        base_url: str = "https://api.airtable.com/v0",
        timeout_s: int = 30,
        page_size: int = 100,
        max_retries: int = 5,
        min_backoff_s: float = 0.8,
        max_backoff_s: float = 20.0,
    ) -> None:
        self._token = token
        self._base_id = base_id
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._page_size = page_size
        self._max_retries = max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._session = session or requests.Session()
        self._schema: Optional[List[Dict[str, Any]]] = None

    # ======================================
    # Schema
    # ======================================
    def list_tables(self) -> List[str]:
        return [t["name"] for t in self._tables()]

    def list_fields(self, table: str) -> List[FieldDefinition]:
        """
        Return the field definitions of one table.

        Raises:
            SourceError: if the table is not part of the base
        """
        tables = self._tables()
        names_by_id = {t["id"]: t["name"] for t in tables}
        table_schema = next((t for t in tables if table in (t["name"], t["id"])), None)
        if table_schema is None:
            raise SourceError("table not found in base", table=table)

        fields = []
        for f in table_schema.get("fields", []):
            options = dict(f.get("options") or {})
            linked_id = options.get("linkedTableId")
            if linked_id and linked_id in names_by_id:
                options["linkedTableName"] = names_by_id[linked_id]
            fields.append(
                FieldDefinition(
                    name=f["name"],
                    declared_type=f["type"],
                    options=options,
                    table_name=table_schema["name"],
                    field_id=f.get("id"),
                )
            )
        return fields

    def _tables(self) -> List[Dict[str, Any]]:
        # One schema snapshot per source instance
        if self._schema is None:
            url = f"{self._base_url}/meta/bases/{self._base_id}/tables"
            payload = self._request_json("GET", url, query=[])
            self._schema = payload.get("tables") or []
            logger.debug(f"Loaded schema for {len(self._schema)} tables of base {self._base_id}")
        return self._schema

    # ======================================
    # Records
    # ======================================
    def page_records(self, table: str, cursor: Optional[str] = None) -> RecordPage:
        url = f"{self._base_url}/{self._base_id}/{quote(table, safe='')}"
        query: List[tuple] = [("pageSize", self._page_size)]
        if cursor:
            query.append(("offset", cursor))

        payload = self._request_json("GET", url, query=query, table=table)
        records = []
        for rec in payload.get("records") or []:
            if not rec.get("id"):
                raise SourceError("API returned a record without 'id'", table=table)
            records.append({"id": rec["id"], "fields": rec.get("fields") or {}})
        return RecordPage(records=records, next_cursor=payload.get("offset"))

    # ======================================
    # HTTP
    # ======================================
    def _request_json(
        self, method: str, url: str, *, query: List[tuple], table: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Request with backoff for 429/5xx.

        - 429: honour Retry-After when present, else exponential
        - 5xx and network errors: exponential
        - other 4xx: fail immediately (bad token, unknown table)
        """
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

        for attempt in range(self._max_retries + 1):
            try:
                resp = self._session.request(
                    method=method,
                    url=url,
                    params=query,
                    headers=headers,
                    timeout=self._timeout_s,
                )
            except requests.RequestException as e:
                if attempt >= self._max_retries:
                    raise SourceError(f"request failed after {attempt} retries: {e}", table=table) from e
                self._sleep(attempt, None)
                continue

            if 200 <= resp.status_code < 300:
                return resp.json()

            if resp.status_code == 429 or 500 <= resp.status_code < 600:
                if attempt >= self._max_retries:
                    raise SourceError(
                        f"HTTP {resp.status_code} after {attempt} retries: {resp.text[:200]}", table=table
                    )
                logger.warning(f"HTTP {resp.status_code} from source, retry {attempt + 1}/{self._max_retries}")
                self._sleep(attempt, resp.headers.get("Retry-After"))
                continue

            raise SourceError(f"HTTP {resp.status_code}: {resp.text[:200]}", table=table)

        raise SourceError("retries exhausted", table=table)

    def _sleep(self, attempt: int, retry_after: Optional[str]) -> None:
        if retry_after:
            try:
                time.sleep(float(retry_after))
                return
            except ValueError:
                pass
        base = min(self._max_backoff_s, self._min_backoff_s * (2 ** attempt))
        time.sleep(base * 1.15)
