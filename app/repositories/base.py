import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

from app.core.exceptions import RecordStoreError
from app.core.record_store import Filters, Record, RecordStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseRepository:
    """Thin base class that holds the record store and table name.

    Concrete repositories translate between raw records and typed models;
    they never leak field bags to their callers.
    """

    table: str = ""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def _list(
        self, mapper: Callable[[Record], T], filters: Optional[Filters] = None
    ) -> List[T]:
        """Fetch and map records, skipping any that cannot be mapped."""
        items: List[T] = []
        for record in await self._store.get_records(self.table, filters):
            try:
                items.append(mapper(record))
            except RecordStoreError as exc:
                logger.warning("Skipping %s", exc.detail)
        return items

    async def _get(self, mapper: Callable[[Record], T], record_id: str) -> Optional[T]:
        record = await self._store.get_record(self.table, record_id)
        return mapper(record) if record is not None else None

    async def _update(self, record_id: str, fields: Dict[str, Any]) -> Record:
        return await self._store.update_record(self.table, record_id, fields)
