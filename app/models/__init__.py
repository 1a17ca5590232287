from app.models.base import Base
from app.models.record import StoredRecord

__all__ = [
    "Base",
    "StoredRecord",
]
