from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class NotificationOut(BaseModel):
    id: int
    event: str
    title: str
    message: str
    priority: str
    is_read: bool
    booking_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
