import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import RecordStoreError
from app.core.record_store import Filters, Record, RecordStore, matches_filters
from app.models.record import StoredRecord

logger = logging.getLogger(__name__)

# Unconditional updates retry this many times when a concurrent writer
# bumps the row version between read and write.
_MAX_UPDATE_ATTEMPTS = 3


def _export(row: StoredRecord) -> Record:
    created = row.created_at
    if created is not None and created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return {
        "id": row.record_id,
        "createdTime": created.isoformat() if created else None,
        **(row.fields or {}),
    }


class SqlRecordStore(RecordStore):
    """Record store backed by the ``records`` table.

    Parameters:
        session_factory: An async context-manager callable that yields
            an ``AsyncSession`` (e.g. ``AsyncSessionLocal``).  Each call
            opens its own short transaction.
    """

    def __init__(self, session_factory: Callable[..., AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_records(
        self, table: str, filters: Optional[Filters] = None
    ) -> List[Record]:
        # Field-level filtering happens in Python so that the same JSON
        # column works on both PostgreSQL and SQLite.
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(StoredRecord)
                    .where(StoredRecord.table_name == table)
                    .order_by(StoredRecord.created_at.asc())
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            logger.error("Failed to read %s records: %s", table, exc)
            raise RecordStoreError(f"Failed to read {table} records") from exc
        return [_export(row) for row in rows if matches_filters(row.fields, filters)]

    async def get_record(self, table: str, record_id: str) -> Optional[Record]:
        try:
            async with self._session_factory() as session:
                row = await session.get(StoredRecord, record_id)
        except SQLAlchemyError as exc:
            logger.error("Failed to read %s record %s: %s", table, record_id, exc)
            raise RecordStoreError(f"Failed to read {table} record") from exc
        if row is None or row.table_name != table:
            return None
        return _export(row)

    async def create_record(self, table: str, fields: Dict[str, Any]) -> Record:
        record_id = fields.get("id") or str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        bag = {k: v for k, v in fields.items() if k != "id"}
        row = StoredRecord(
            record_id=record_id,
            table_name=table,
            fields=bag,
            version=1,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to create %s record: %s", table, exc)
            raise RecordStoreError(f"Failed to create {table} record") from exc
        return {"id": record_id, "createdTime": now.isoformat(), **bag}

    async def update_record(
        self, table: str, record_id: str, fields: Dict[str, Any]
    ) -> Record:
        for _ in range(_MAX_UPDATE_ATTEMPTS):
            if await self.get_record(table, record_id) is None:
                raise RecordStoreError(f"{table} record {record_id} not found")
            updated = await self.update_record_if(table, record_id, {}, fields)
            if updated is not None:
                return updated
        raise RecordStoreError(
            f"{table} record {record_id} changed concurrently; update abandoned"
        )

    async def update_record_if(
        self,
        table: str,
        record_id: str,
        expected: Filters,
        fields: Dict[str, Any],
    ) -> Optional[Record]:
        try:
            async with self._session_factory() as session:
                row = await session.get(StoredRecord, record_id)
                if (
                    row is None
                    or row.table_name != table
                    or not matches_filters(row.fields, expected)
                ):
                    return None

                merged = {**(row.fields or {}), **fields}
                created = row.created_at
                result = await session.execute(
                    update(StoredRecord)
                    .where(
                        StoredRecord.record_id == record_id,
                        StoredRecord.version == row.version,
                    )
                    .values(
                        fields=merged,
                        version=row.version + 1,
                        updated_at=datetime.now(timezone.utc),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    await session.rollback()
                    logger.debug(
                        "Version conflict on %s record %s", table, record_id
                    )
                    return None
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to update %s record %s: %s", table, record_id, exc)
            raise RecordStoreError(f"Failed to update {table} record") from exc

        if created is not None and created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return {
            "id": record_id,
            "createdTime": created.isoformat() if created else None,
            **merged,
        }

    async def delete_record(self, table: str, record_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                row = await session.get(StoredRecord, record_id)
                if row is None or row.table_name != table:
                    return False
                await session.delete(row)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to delete %s record %s: %s", table, record_id, exc)
            raise RecordStoreError(f"Failed to delete {table} record") from exc
        return True
