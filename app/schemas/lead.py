"""Lead schema as seen by the call queue."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.schemas.common import LeadStatus


class Lead(BaseModel):
    """The subset of a lead record the scheduler reads and updates."""

    id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    source: Optional[str] = None
    status: LeadStatus = LeadStatus.new
    last_contacted: Optional[datetime] = None
