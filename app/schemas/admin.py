from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class AdminCreate(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class AdminLogin(BaseModel):
    email: EmailStr
    password: str


class AdminOut(BaseModel):
    id: int
    name: str
    email: EmailStr
    hotel_count: int = 0
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AdminStats(BaseModel):
    total_hotels: int
    total_rooms: int
    total_users: int
    total_bookings: int
    bookings_by_status: dict[str, int]
    open_refund_requests: int
    active_holds: int
