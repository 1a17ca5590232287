from typing import List, Optional

from app.core.constants import CLIENTS_TABLE
from app.repositories.base import BaseRepository
from app.repositories.mappers import client_from_record, schedule_to_fields
from app.schemas.client import Client, ClientScheduleConfig
from app.schemas.common import ClientStatus


class ClientRepository(BaseRepository):
    """Typed access to the ``Clients`` table."""

    table = CLIENTS_TABLE

    async def get(self, client_id: str) -> Optional[Client]:
        return await self._get(client_from_record, client_id)

    async def list_active(self) -> List[Client]:
        return await self._list(
            client_from_record, {"Status": ClientStatus.active.value}
        )

    async def update_schedule(
        self, client_id: str, schedule: ClientScheduleConfig
    ) -> Client:
        record = await self._update(client_id, schedule_to_fields(schedule))
        return client_from_record(record)
