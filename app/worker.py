import os

from celery import Celery
from celery.schedules import crontab
from dotenv import load_dotenv

import app.db.base  # noqa: F401  (register all models)
from app.services.sweeper import run_hold_expiry, run_sweep

load_dotenv()

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

celery_app = Celery("hotel_booking", broker=REDIS_URL, backend=REDIS_URL)


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

celery_app.conf.beat_schedule = {
    # Complete stays past check-out - every day at midnight
    "complete-finished-bookings": {
        "task": "bookings.complete_finished_bookings",
        "schedule": crontab(hour=0, minute=0),
    },
    # Drop unpaid room holds - every minute
    "release-expired-holds": {
        "task": "bookings.release_expired_holds",
        "schedule": 60.0,
        "options": {"expires": 50},
    },
}

celery_app.conf.timezone = os.getenv("CELERY_TIMEZONE", "UTC")


@celery_app.task(name="bookings.complete_finished_bookings")
def complete_finished_bookings():
    """Mark confirmed bookings past check-out as completed and free their rooms"""
    result = run_sweep()
    return {"completed": len(result["completed"]), "failed": len(result["failed"])}


@celery_app.task(name="bookings.release_expired_holds")
def release_expired_holds():
    """Expire room holds whose payment was never confirmed"""
    return run_hold_expiry()
