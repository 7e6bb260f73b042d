from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.dependencies import get_current_principal, get_db
from app.models.notification import Notification
from app.schemas.notification import NotificationOut

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _visible_to(query, who, role):
    if role == "admin":
        return query.filter(Notification.recipient_role == "admin")
    return query.filter(
        Notification.recipient_role == "user",
        Notification.recipient_id == who.id,
    )


@router.get("/", response_model=list[NotificationOut])
def my_notifications(unread_only: bool = False, principal=Depends(get_current_principal),
                     db: Session = Depends(get_db)):
    who, role = principal
    query = _visible_to(db.query(Notification), who, role)
    if unread_only:
        query = query.filter(Notification.is_read == False)  # noqa: E712
    return query.order_by(Notification.created_at.desc()).all()


@router.put("/{notification_id}/read", response_model=NotificationOut)
def mark_read(notification_id: int, principal=Depends(get_current_principal),
              db: Session = Depends(get_db)):
    who, role = principal
    note = (
        _visible_to(db.query(Notification), who, role)
        .filter(Notification.id == notification_id)
        .first()
    )
    if not note:
        raise HTTPException(status_code=404, detail="Notification not found")

    note.is_read = True
    db.commit()
    db.refresh(note)
    return note
