from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.enums import RefundType, RoomType


class PaymentIntentCreate(BaseModel):
    hotel_id: int
    check_in: date
    check_out: date
    adults: int = Field(..., ge=1)
    children: int = Field(0, ge=0)
    room_type: RoomType


class PaymentIntentOut(BaseModel):
    client_secret: str
    payment_intent_id: str
    total_price: float
    room_number: str
    currency: str
    expires_at: datetime
    razorpay_key_id: Optional[str] = None


class BookingCreate(BaseModel):
    # Price, room and dates come from the server-side hold, not the client
    payment_intent_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class BookingOut(BaseModel):
    id: int
    booking_code: str
    user_id: int
    hotel_id: int
    room_number: str
    room_type: str
    check_in: date
    check_out: date
    adults: int
    children: int
    total_price: float
    refunded_amount: float
    status: str
    payment_status: str
    refund_status: str
    payment_intent_id: str
    refund_reason: Optional[str] = None
    refund_requested_at: Optional[datetime] = None
    refund_requested_amount: Optional[float] = None
    refund_admin_notes: Optional[str] = None
    refund_processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BookingPage(BaseModel):
    bookings: List[BookingOut]
    total: int
    page: int
    total_pages: int


class RefundIssue(BaseModel):
    type: RefundType
    amount: Optional[float] = Field(None, gt=0)
    admin_notes: Optional[str] = None


class RefundRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    amount: Optional[float] = Field(None, gt=0)


class RefundReject(BaseModel):
    admin_notes: Optional[str] = None


class RefundOut(BaseModel):
    message: str
    refund_amount: float
    booking: BookingOut
