from typing import Any, Optional

from app.core.constants import LEADS_TABLE
from app.repositories.base import BaseRepository
from app.repositories.mappers import (
    LEAD_FIELD_NAMES,
    changes_to_fields,
    lead_from_record,
)
from app.schemas.lead import Lead


class LeadRepository(BaseRepository):
    """Encapsulates every read and write the scheduler makes on ``Leads``."""

    table = LEADS_TABLE

    async def get(self, lead_id: str) -> Optional[Lead]:
        """Return a single lead by id, or ``None``."""
        return await self._get(lead_from_record, lead_id)

    async def update(self, lead_id: str, **changes: Any) -> Lead:
        record = await self._update(lead_id, changes_to_fields(LEAD_FIELD_NAMES, changes))
        return lead_from_record(record)
