from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    NONE = "none"
    REQUESTED = "requested"
    PARTIAL = "partial"
    COMPLETED = "completed"
    REJECTED = "rejected"


class RefundType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


class RoomStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"


class HoldStatus(str, Enum):
    ACTIVE = "active"
    CONVERTED = "converted"  # turned into a booking
    EXPIRED = "expired"
    RELEASED = "released"
    REFUNDED = "refunded"


class RoomType(str, Enum):
    STANDARD = "Standard"
    DELUXE = "Deluxe"
    SUITE = "Suite"
    PREMIUM = "Premium"
    EXECUTIVE = "Executive"
    ACCESSIBLE = "Accessible"
    PRESIDENTIAL = "Presidential"
    HONEYMOON = "Honeymoon"
    FAMILY = "Family"
