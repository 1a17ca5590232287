"""Generic record store interface.

Every table the scheduler touches (``Leads``, ``Calls``, ``Queue``,
``Clients``) is reached through a :class:`RecordStore`.  Records are
schema-less field bags shaped like Airtable rows::

    {"id": "...", "createdTime": "...", **fields}

Typed models are built from these bags in ``app.repositories.mappers``;
nothing outside the repository layer should read raw records.
"""

import asyncio
import copy
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.core.exceptions import RecordStoreError

Record = Dict[str, Any]
Filters = Dict[str, Any]


def matches_filters(fields: Dict[str, Any], filters: Optional[Filters]) -> bool:
    """Return ``True`` if *fields* satisfies every equality filter.

    A filter value that is a list, tuple, set or frozenset matches when the
    field equals any of its members.
    """
    if not filters:
        return True
    for key, expected in filters.items():
        actual = fields.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class RecordStore(ABC):
    """CRUD over named tables of untyped records."""

    @abstractmethod
    async def get_records(
        self, table: str, filters: Optional[Filters] = None
    ) -> List[Record]:
        """Return every record in *table* matching *filters*."""

    @abstractmethod
    async def get_record(self, table: str, record_id: str) -> Optional[Record]:
        """Return one record, or ``None`` if it does not exist."""

    @abstractmethod
    async def create_record(self, table: str, fields: Dict[str, Any]) -> Record:
        """Insert a record and return it with its generated ``id``."""

    @abstractmethod
    async def update_record(
        self, table: str, record_id: str, fields: Dict[str, Any]
    ) -> Record:
        """Merge *fields* into an existing record and return the result."""

    @abstractmethod
    async def update_record_if(
        self,
        table: str,
        record_id: str,
        expected: Filters,
        fields: Dict[str, Any],
    ) -> Optional[Record]:
        """Compare-and-set: apply *fields* only if the record matches *expected*.

        Returns the updated record, or ``None`` when the record is missing
        or no longer matches (another writer got there first).
        """

    @abstractmethod
    async def delete_record(self, table: str, record_id: str) -> bool:
        """Delete a record; return ``False`` if it did not exist."""

    async def close(self) -> None:
        """Release any held connections."""


class InMemoryRecordStore(RecordStore):
    """Process-local record store.

    Used for development and tests.  A single ``asyncio.Lock`` makes every
    mutation atomic with respect to other coroutines in the same loop.
    """

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Record]] = {}
        self._lock = asyncio.Lock()

    def _table(self, table: str) -> Dict[str, Record]:
        return self._tables.setdefault(table, {})

    @staticmethod
    def _export(record_id: str, row: Record) -> Record:
        return {
            "id": record_id,
            "createdTime": row["createdTime"],
            **copy.deepcopy(row["fields"]),
        }

    async def get_records(
        self, table: str, filters: Optional[Filters] = None
    ) -> List[Record]:
        return [
            self._export(record_id, row)
            for record_id, row in self._table(table).items()
            if matches_filters(row["fields"], filters)
        ]

    async def get_record(self, table: str, record_id: str) -> Optional[Record]:
        row = self._table(table).get(record_id)
        return self._export(record_id, row) if row is not None else None

    async def create_record(self, table: str, fields: Dict[str, Any]) -> Record:
        async with self._lock:
            record_id = fields.get("id") or str(uuid.uuid4())
            row = {
                "createdTime": datetime.now(timezone.utc).isoformat(),
                "fields": copy.deepcopy({k: v for k, v in fields.items() if k != "id"}),
            }
            self._table(table)[record_id] = row
            return self._export(record_id, row)

    async def update_record(
        self, table: str, record_id: str, fields: Dict[str, Any]
    ) -> Record:
        async with self._lock:
            row = self._table(table).get(record_id)
            if row is None:
                raise RecordStoreError(f"{table} record {record_id} not found")
            row["fields"].update(copy.deepcopy(fields))
            return self._export(record_id, row)

    async def update_record_if(
        self,
        table: str,
        record_id: str,
        expected: Filters,
        fields: Dict[str, Any],
    ) -> Optional[Record]:
        async with self._lock:
            row = self._table(table).get(record_id)
            if row is None or not matches_filters(row["fields"], expected):
                return None
            row["fields"].update(copy.deepcopy(fields))
            return self._export(record_id, row)

    async def delete_record(self, table: str, record_id: str) -> bool:
        async with self._lock:
            return self._table(table).pop(record_id, None) is not None
