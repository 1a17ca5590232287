from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, text
from sqlalchemy.dialects.postgresql import JSONB

from app.models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredRecord(Base):
    """One schema-less record of a logical table (Leads, Calls, Queue, Clients).

    ``fields`` holds the record's field bag.  ``version`` is bumped on every
    write and backs the optimistic compare-and-set used by
    ``SqlRecordStore.update_record_if``.
    """

    __tablename__ = "records"
    record_id = Column(String(36), primary_key=True)
    table_name = Column(String(64), nullable=False)
    fields = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False)
    version = Column(Integer, nullable=False, server_default=text("1"))
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (Index("ix_records_table_name", "table_name"),)
