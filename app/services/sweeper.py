from datetime import datetime

from app.core.logging_config import get_logger
from app.db.session import SessionLocal
from app.services import room_inventory
from app.services.booking_lifecycle import sweep_completions

logger = get_logger("sweeper")


def run_sweep(session_factory=SessionLocal, now: datetime | None = None) -> dict:
    """One completion pass over all bookings. Never raises."""
    db = session_factory()
    try:
        return sweep_completions(db, now=now)
    except Exception as e:
        logger.exception(f"Completion sweep aborted: {e}")
        return {"completed": [], "failed": [], "error": str(e)}
    finally:
        db.close()


def run_hold_expiry(session_factory=SessionLocal, now: datetime | None = None) -> int:
    db = session_factory()
    try:
        expired = room_inventory.release_expired_holds(db, now=now)
        if expired:
            logger.info(f"Expired {expired} room holds")
        return expired
    except Exception as e:
        db.rollback()
        logger.exception(f"Hold expiry failed: {e}")
        return 0
    finally:
        db.close()
