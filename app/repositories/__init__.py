"""Repository layer – all record store access goes through here.

Repositories map raw records to typed models so that the service layer
only contains business logic.
"""

from app.repositories.queue_repository import QueueRepository
from app.repositories.call_repository import CallRepository
from app.repositories.client_repository import ClientRepository
from app.repositories.lead_repository import LeadRepository

__all__ = [
    "QueueRepository",
    "CallRepository",
    "ClientRepository",
    "LeadRepository",
]
