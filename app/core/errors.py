from fastapi import Request
from fastapi.responses import JSONResponse


class BookingError(Exception):
    """Base class for booking domain errors.

    Each subclass maps to one HTTP status so the routes never have to
    translate service exceptions by hand.
    """

    status_code = 400
    code = "booking_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(BookingError):
    code = "validation_error"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class NotFound(BookingError):
    status_code = 404
    code = "not_found"


class PermissionDenied(BookingError):
    status_code = 403
    code = "permission_denied"


class NoRoomAvailable(BookingError):
    status_code = 409
    code = "no_room_available"


class PaymentProviderError(BookingError):
    status_code = 502
    code = "payment_provider_error"


class WebhookSignatureError(BookingError):
    code = "invalid_webhook_signature"


class AlreadyRefunded(BookingError):
    code = "already_refunded"


class InvalidRefundAmount(BookingError):
    code = "invalid_refund_amount"


class ConcurrencyConflict(BookingError):
    status_code = 409
    code = "concurrency_conflict"


async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )
