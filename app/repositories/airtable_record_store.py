import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from app.core.exceptions import RecordStoreError
from app.core.record_store import Filters, Record, RecordStore, matches_filters

logger = logging.getLogger(__name__)

# Timeout for Airtable REST calls (seconds).
_DEFAULT_TIMEOUT = 10.0


def _formula_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "TRUE()" if value else "FALSE()"
    if isinstance(value, (int, float)):
        return repr(value)
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def build_filter_formula(filters: Optional[Filters]) -> str:
    """Translate equality filters into an Airtable ``filterByFormula``.

    >>> build_filter_formula({"ClientId": "c1", "Status": ["pending", "scheduled"]})
    "AND({ClientId}='c1', OR({Status}='pending', {Status}='scheduled'))"
    """
    if not filters:
        return ""
    clauses = []
    for field, expected in filters.items():
        if isinstance(expected, (list, tuple, set, frozenset)):
            options = [f"{{{field}}}={_formula_literal(v)}" for v in sorted(expected)]
            clauses.append(f"OR({', '.join(options)})" if options else "FALSE()")
        else:
            clauses.append(f"{{{field}}}={_formula_literal(expected)}")
    return clauses[0] if len(clauses) == 1 else f"AND({', '.join(clauses)})"


def _encode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Airtable cells cannot hold objects; store them as JSON text."""
    encoded: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, dict) or (
            isinstance(value, list) and any(isinstance(v, dict) for v in value)
        ):
            encoded[key] = json.dumps(value, default=str)
        else:
            encoded[key] = value
    return encoded


def _export(raw: Dict[str, Any]) -> Record:
    return {
        "id": raw["id"],
        "createdTime": raw.get("createdTime"),
        **(raw.get("fields") or {}),
    }


class AirtableRecordStore(RecordStore):
    """Record store backed by an Airtable base via its REST API.

    Airtable has no conditional writes, so :meth:`update_record_if` is a
    read-check-write; the window between read and write is the only
    place a concurrent writer can slip through.
    """

    def __init__(
        self,
        api_key: str,
        base_id: str,
        api_url: str = "https://api.airtable.com/v0",
        timeout: float = _DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key or not base_id:
            raise RecordStoreError("AIRTABLE_API_KEY and AIRTABLE_BASE_ID must be set")
        self._base_url = f"{api_url.rstrip('/')}/{base_id}"
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> Optional[Dict[str, Any]]:
        """Send one request; ``None`` on 404, ``RecordStoreError`` otherwise."""
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
                if response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as exc:
            logger.error("Airtable %s %s timed out", method, path)
            raise RecordStoreError("Airtable request timed out") from exc
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Airtable %s %s returned %s", method, path, exc.response.status_code
            )
            raise RecordStoreError(
                f"Airtable returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Airtable %s %s failed: %s", method, path, exc)
            raise RecordStoreError("Airtable unavailable") from exc

    async def get_records(
        self, table: str, filters: Optional[Filters] = None
    ) -> List[Record]:
        params: Dict[str, Any] = {}
        formula = build_filter_formula(filters)
        if formula:
            params["filterByFormula"] = formula

        records: List[Record] = []
        while True:
            page = await self._request("GET", f"/{table}", params=params) or {}
            records.extend(_export(raw) for raw in page.get("records", []))
            offset = page.get("offset")
            if not offset:
                break
            params["offset"] = offset
        return records

    async def get_record(self, table: str, record_id: str) -> Optional[Record]:
        raw = await self._request("GET", f"/{table}/{record_id}")
        return _export(raw) if raw else None

    async def create_record(self, table: str, fields: Dict[str, Any]) -> Record:
        body = {
            "fields": _encode_fields({k: v for k, v in fields.items() if k != "id"}),
            "typecast": True,
        }
        raw = await self._request("POST", f"/{table}", json=body)
        if raw is None:
            raise RecordStoreError(f"Airtable table {table} not found")
        return _export(raw)

    async def update_record(
        self, table: str, record_id: str, fields: Dict[str, Any]
    ) -> Record:
        body = {"fields": _encode_fields(fields), "typecast": True}
        raw = await self._request("PATCH", f"/{table}/{record_id}", json=body)
        if raw is None:
            raise RecordStoreError(f"{table} record {record_id} not found")
        return _export(raw)

    async def update_record_if(
        self,
        table: str,
        record_id: str,
        expected: Filters,
        fields: Dict[str, Any],
    ) -> Optional[Record]:
        current = await self.get_record(table, record_id)
        if current is None or not matches_filters(current, expected):
            return None
        return await self.update_record(table, record_id, fields)

    async def delete_record(self, table: str, record_id: str) -> bool:
        raw = await self._request("DELETE", f"/{table}/{record_id}")
        return bool(raw and raw.get("deleted"))
