# Auth endpoints: register, login, logout, me
import logging
import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from printdesk.auth import (
    SIGNED_IN,
    SIGNED_OUT,
    auth_events,
    create_access_token,
    hash_password,
    normalize_mobile,
    verify_password,
)
from printdesk.config import ADMIN_MOBILE_NUMBERS, MIN_PASSWORD_LENGTH
from printdesk.db import get_db
from printdesk.errors import AuthenticationError, PersistenceError, RegistrationError
from printdesk.models import Role, User, UserRole
from printdesk.session import CurrentUser, UserContext, get_current_user, get_user_context, load_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    name: str
    mobile_number: str
    password: str

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v

    @field_validator("password")
    @classmethod
    def password_min_length(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return v


class LoginRequest(BaseModel):
    mobile_number: str
    password: str


def _user_payload(user: CurrentUser) -> dict:
    return {"id": user.id, "name": user.name, "mobile_number": user.mobile_number, "role": user.role}


def _admin_numbers() -> set[str]:
    return {n for n in (normalize_mobile(raw) for raw in ADMIN_MOBILE_NUMBERS) if n}


def _issue(db: Session, user_id: str) -> dict:
    token, session = create_access_token(user_id)
    auth_events.emit(SIGNED_IN, session)
    user = load_user(db, user_id)
    return {"access_token": token, "token_type": "bearer", "user": _user_payload(user)}


@router.post("/register", status_code=201)
def register(body: RegisterRequest, db: Session = Depends(get_db)):
    """
    Creates an account keyed by mobile number.
    400 if the number is invalid or already registered.
    """
    mobile = normalize_mobile(body.mobile_number)
    if not mobile:
        raise RegistrationError("Invalid mobile number")
    if db.query(User).filter(User.mobile_number == mobile).first():
        raise RegistrationError("This mobile number is already registered. Please login instead.")

    user = User(
        id=str(uuid.uuid4()),
        name=body.name,
        mobile_number=mobile,
        password_hash=hash_password(body.password),
    )
    role = Role.ADMIN if mobile in _admin_numbers() else Role.USER
    db.add(user)
    try:
        db.flush()
        db.add(UserRole(user_id=user.id, role=role))
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise RegistrationError("This mobile number is already registered. Please login instead.") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError() from e

    logger.info(f"[AUTH] registered {user.id} role={role}")
    return _issue(db, user.id)


@router.post("/login")
def login(body: LoginRequest, db: Session = Depends(get_db)):
    """Mobile number + password; returns a JWT."""
    mobile = normalize_mobile(body.mobile_number)
    user = db.query(User).filter(User.mobile_number == mobile).first() if mobile else None
    if not user or not verify_password(body.password, user.password_hash):
        raise AuthenticationError("Invalid mobile number or password")
    return _issue(db, user.id)


@router.post("/logout")
def logout(ctx: UserContext = Depends(get_user_context)):
    """Revokes the token that made the request."""
    if ctx.user is None or ctx.session is None:
        raise AuthenticationError("Invalid or expired token")
    auth_events.emit(SIGNED_OUT, ctx.session)
    ctx.clear()
    return {"message": "Logged out"}


@router.get("/me")
def me(current_user: CurrentUser = Depends(get_current_user)):
    return _user_payload(current_user)
