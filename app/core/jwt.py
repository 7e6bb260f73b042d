import os
from datetime import datetime, timedelta

from dotenv import load_dotenv
from fastapi import HTTPException
from jose import JWTError, jwt

load_dotenv()

ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))

ROLES = ("admin", "user")


def _secret():
    return os.getenv("JWT_SECRET")


def _algorithm():
    return os.getenv("JWT_ALGORITHM", "HS256")


# -------- CREATE TOKEN --------
def create_access_token(data: dict, expires_delta: int | None = None):
    """Sign a token carrying ``sub`` (email) and ``role``."""
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(
        minutes=expires_delta if expires_delta else ACCESS_TOKEN_EXPIRE_MINUTES
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, _secret(), algorithm=_algorithm())


# -------- DECODE TOKEN --------
def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, _secret(), algorithms=[_algorithm()])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    if not payload.get("sub") or payload.get("role") not in ROLES:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return payload
