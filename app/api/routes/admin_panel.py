from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.dependencies import get_db, require_admin
from app.models.admin import Admin
from app.models.booking import Booking
from app.models.enums import HoldStatus, RefundStatus
from app.models.hotel import Hotel, Room
from app.models.room_hold import RoomHold
from app.models.user import User
from app.schemas.admin import AdminOut, AdminStats
from app.schemas.hotel import HotelOut
from app.schemas.user import UserOut

router = APIRouter(prefix="/admin-panel", tags=["Admin Panel"])


# ==================================================
# GET ALL USERS (ADMIN)
# ==================================================
@router.get("/users", response_model=list[UserOut])
def get_all_users(admin: Admin = Depends(require_admin), db: Session = Depends(get_db)):
    return db.query(User).all()


# ==================================================
# GET ALL ADMINS
# ==================================================
@router.get("/admins", response_model=list[AdminOut])
def get_all_admins(admin: Admin = Depends(require_admin), db: Session = Depends(get_db)):
    return db.query(Admin).all()


# ==================================================
# GET ONLY LOGGED-IN ADMIN'S HOTELS
# ==================================================
@router.get("/hotels", response_model=list[HotelOut])
def get_my_hotels(admin: Admin = Depends(require_admin), db: Session = Depends(get_db)):
    return db.query(Hotel).filter(Hotel.admin_id == admin.id).all()


# ==================================================
# SUMMARY STATS
# ==================================================
@router.get("/stats", response_model=AdminStats)
def admin_stats(admin: Admin = Depends(require_admin), db: Session = Depends(get_db)):
    by_status = dict(
        db.query(Booking.status, func.count(Booking.id))
        .group_by(Booking.status)
        .all()
    )

    return AdminStats(
        total_hotels=db.query(Hotel).count(),
        total_rooms=db.query(Room).count(),
        total_users=db.query(User).count(),
        total_bookings=sum(by_status.values()),
        bookings_by_status=by_status,
        open_refund_requests=db.query(Booking)
        .filter(Booking.refund_status == RefundStatus.REQUESTED.value)
        .count(),
        active_holds=db.query(RoomHold)
        .filter(
            RoomHold.status == HoldStatus.ACTIVE.value,
            RoomHold.expires_at > datetime.utcnow(),
        )
        .count(),
    )
