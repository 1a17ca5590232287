from typing import Any, Dict, Iterable, List, Optional

from app.core.constants import QUEUE_TABLE
from app.repositories.base import BaseRepository
from app.repositories.mappers import (
    QUEUE_FIELD_NAMES,
    changes_to_fields,
    expected_to_fields,
    queue_item_from_record,
    queue_item_to_fields,
)
from app.schemas.queue import QueueItem


class QueueRepository(BaseRepository):
    """Typed access to the ``Queue`` table."""

    table = QUEUE_TABLE

    async def get(self, item_id: str) -> Optional[QueueItem]:
        return await self._get(queue_item_from_record, item_id)

    async def list_for_client(
        self, client_id: str, statuses: Optional[Iterable[str]] = None
    ) -> List[QueueItem]:
        filters: Dict[str, Any] = {"ClientId": client_id}
        if statuses is not None:
            filters["Status"] = sorted(statuses)
        return await self._list(queue_item_from_record, filters)

    async def list_for_lead(
        self,
        client_id: str,
        lead_id: str,
        statuses: Optional[Iterable[str]] = None,
    ) -> List[QueueItem]:
        filters: Dict[str, Any] = {"ClientId": client_id, "LeadId": lead_id}
        if statuses is not None:
            filters["Status"] = sorted(statuses)
        return await self._list(queue_item_from_record, filters)

    async def create(self, item: QueueItem) -> QueueItem:
        """Insert *item*; the store assigns the id unless one is set."""
        fields = queue_item_to_fields(item)
        if item.id:
            fields["id"] = item.id
        record = await self._store.create_record(self.table, fields)
        return queue_item_from_record(record)

    async def update_if(
        self, item_id: str, expected: Dict[str, Any], **changes: Any
    ) -> Optional[QueueItem]:
        """Apply *changes* only if the item still matches *expected*.

        ``None`` means the item is gone or another writer changed it first.
        """
        record = await self._store.update_record_if(
            self.table,
            item_id,
            expected_to_fields(QUEUE_FIELD_NAMES, expected),
            changes_to_fields(QUEUE_FIELD_NAMES, changes),
        )
        return queue_item_from_record(record) if record is not None else None
