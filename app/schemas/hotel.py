from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from app.models.enums import RoomStatus, RoomType


class SeasonalRule(BaseModel):
    start_date: date
    end_date: date
    price: float = 0.0

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class RoomBase(BaseModel):
    number: str
    type: RoomType = RoomType.STANDARD
    price: float = Field(0.0, ge=0)
    max_guests: int = Field(2, ge=1)
    images: List[str] = []


class RoomCreate(RoomBase):
    pass


class RoomUpdate(BaseModel):
    number: Optional[str] = None
    type: Optional[RoomType] = None
    price: Optional[float] = Field(None, ge=0)
    max_guests: Optional[int] = Field(None, ge=1)
    status: Optional[RoomStatus] = None
    images: Optional[List[str]] = None


class RoomOut(RoomBase):
    id: int
    status: RoomStatus

    model_config = {"from_attributes": True}


class HotelBase(BaseModel):
    name: str
    description: str = ""
    base_price: float = Field(100.0, ge=0)
    amenities: List[str] = []
    address: str = ""
    city: str = ""
    country: str = ""


class HotelCreate(HotelBase):
    seasonal_pricing: List[SeasonalRule] = []
    rooms: List[RoomCreate] = []


class HotelOut(HotelBase):
    id: int
    seasonal_pricing: List[SeasonalRule] = []
    rooms: List[RoomOut] = []

    model_config = {"from_attributes": True}


class AvailabilityOut(BaseModel):
    hotel_id: int
    room_type: str
    check_in: date
    check_out: date
    available: bool
    room_number: Optional[str] = None


class QuoteOut(BaseModel):
    hotel_id: int
    room_type: str
    nights: int
    nightly_price: int
    total_price: float
