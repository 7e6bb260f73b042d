import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import app.db.base  # noqa: F401  (register all models)
from app.api.routes import auth, bookings, hotels, notifications, webhooks
from app.api.routes.admin_panel import router as admin_panel_router
from app.core.errors import BookingError, booking_error_handler
from app.core.logging_config import get_logger
from app.services.notifications import hub

logger = get_logger()

app = FastAPI(
    title="Hotel Booking API",
    version="1.0.0",
    description="Room holds, dynamic pricing, Razorpay payments, refunds and stay completion"
)

# Service errors carry their own status code and machine-readable code
app.add_exception_handler(BookingError, booking_error_handler)


@hub.subscribe
def log_event(event: str, payload: dict):
    logger.bind(log_type="booking").info(f"EVENT {event} | {payload}")


# ⭐ Request Logging Middleware
@app.middleware("http")
async def log_requests(request, call_next):
    started = time.perf_counter()
    logger.info(f"REQUEST: {request.method} {request.url.path}")

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"ERROR: {request.method} {request.url.path} -> {e}")
        raise

    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"RESPONSE: {response.status_code} {request.url.path} ({elapsed_ms:.1f} ms)")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(hotels.router)
app.include_router(bookings.router)
app.include_router(notifications.router)
app.include_router(webhooks.router)
app.include_router(admin_panel_router)


@app.get("/", tags=["Root"])
def root():
    return {"message": "Hotel booking backend running"}
