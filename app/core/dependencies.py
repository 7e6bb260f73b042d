from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.jwt import decode_access_token
from app.db.session import SessionLocal
from app.models.admin import Admin
from app.models.user import User
from app.utils.razorpay_client import RazorpayGateway

security = HTTPBearer()

# Token role -> account table
PRINCIPALS = {
    "admin": Admin,
    "user": User,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_payment_gateway():
    return RazorpayGateway()


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
):
    """Resolve the bearer token to ``(account, role)``."""
    payload = decode_access_token(credentials.credentials)
    role = payload["role"]
    model = PRINCIPALS[role]

    account = db.query(model).filter(model.email == payload["sub"]).first()
    if not account:
        # Account removed after the token was issued
        raise HTTPException(status_code=401, detail=f"{role.capitalize()} account no longer exists")
    return account, role


def require_admin(principal=Depends(get_current_principal)) -> Admin:
    admin, role = principal
    if role != "admin":
        raise HTTPException(status_code=403, detail="Admins only")
    return admin


def require_user(principal=Depends(get_current_principal)) -> User:
    user, role = principal
    if role != "user":
        raise HTTPException(status_code=403, detail="Only guests can do this")
    return user
