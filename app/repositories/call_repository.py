from typing import Any, Dict, List, Optional

from app.core.constants import CALLS_TABLE
from app.repositories.base import BaseRepository
from app.repositories.mappers import (
    CALL_FIELD_NAMES,
    call_from_record,
    call_to_fields,
    changes_to_fields,
    expected_to_fields,
)
from app.schemas.call import Call


class CallRepository(BaseRepository):
    """Typed access to the ``Calls`` table.  Calls are never deleted."""

    table = CALLS_TABLE

    async def get(self, call_record_id: str) -> Optional[Call]:
        return await self._get(call_from_record, call_record_id)

    async def find_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        """Look a call up by the provider's ``call_id``."""
        calls = await self._list(call_from_record, {"CallId": provider_call_id})
        return calls[0] if calls else None

    async def list_for_lead(self, lead_id: str) -> List[Call]:
        return await self._list(call_from_record, {"LeadId": lead_id})

    async def create(self, call: Call) -> Call:
        fields = call_to_fields(call)
        if call.id:
            fields["id"] = call.id
        record = await self._store.create_record(self.table, fields)
        return call_from_record(record)

    async def update_if(
        self, call_record_id: str, expected: Dict[str, Any], **changes: Any
    ) -> Optional[Call]:
        record = await self._store.update_record_if(
            self.table,
            call_record_id,
            expected_to_fields(CALL_FIELD_NAMES, expected),
            changes_to_fields(CALL_FIELD_NAMES, changes),
        )
        return call_from_record(record) if record is not None else None
