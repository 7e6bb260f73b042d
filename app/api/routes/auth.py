from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.dependencies import get_db
from app.core.jwt import create_access_token
from app.core.logging_config import get_logger
from app.core.security import hash_password, verify_password
from app.models.admin import Admin
from app.models.user import User
from app.schemas.admin import AdminCreate, AdminLogin, AdminOut
from app.schemas.user import TokenOut, UserCreate, UserLogin, UserOut

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = get_logger()


def _issue_token(account, password: str, role: str) -> TokenOut:
    if not account or not verify_password(password, account.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenOut(
        access_token=create_access_token({"sub": account.email, "role": role}),
        role=role,
    )


# =====================================================================
#                           ADMIN (hotel operator)
# =====================================================================
@router.post("/admin/register", response_model=AdminOut, status_code=201)
def admin_register(data: AdminCreate, db: Session = Depends(get_db)):
    if db.query(Admin).filter(Admin.email == data.email).first():
        raise HTTPException(status_code=400, detail="Admin already exists")

    admin = Admin(name=data.name, email=data.email, password_hash=hash_password(data.password))
    db.add(admin)
    db.commit()
    db.refresh(admin)

    logger.bind(log_type="admin").info(f"Admin registered | email={admin.email}")
    return admin


@router.post("/admin/login", response_model=TokenOut)
def admin_login(data: AdminLogin, db: Session = Depends(get_db)):
    admin = db.query(Admin).filter(Admin.email == data.email).first()
    return _issue_token(admin, data.password, "admin")


# =====================================================================
#                           GUEST
# =====================================================================
@router.post("/user/register", response_model=UserOut, status_code=201)
def user_register(data: UserCreate, db: Session = Depends(get_db)):
    if db.query(User).filter(User.email == data.email).first():
        raise HTTPException(status_code=400, detail="User already exists")

    user = User(
        name=data.name,
        email=data.email,
        phone=data.phone,
        password_hash=hash_password(data.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"Guest registered | email={user.email}")
    return user


@router.post("/user/login", response_model=TokenOut)
def user_login(data: UserLogin, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email).first()
    return _issue_token(user, data.password, "user")
