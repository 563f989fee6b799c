# Authentication: password hashing, JWT, mobile number normalization, auth events
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

import jwt
import phonenumbers
from passlib.context import CryptContext

from printdesk.config import DEFAULT_PHONE_REGION, JWT_ALGORITHM, JWT_EXPIRE_DAYS, JWT_SECRET

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def normalize_mobile(number: str, region: str = DEFAULT_PHONE_REGION) -> str | None:
    """
    Normalizes a mobile number to E.164 (+91XXXXXXXXXX by default).
    Returns None when the input cannot be a phone number.
    """
    if not number:
        return None
    try:
        parsed = phonenumbers.parse(number.strip(), region)
    except phonenumbers.NumberParseException:
        return None
    if not phonenumbers.is_possible_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


@dataclass(frozen=True)
class AuthSession:
    """What a signed-in bearer token stands for."""
    user_id: str
    token_id: str
    expires_at: datetime


def create_access_token(user_id: str) -> tuple[str, AuthSession]:
    """Issues a JWT with user_id as ``sub`` and a unique ``jti`` (used for logout)."""
    expire = datetime.utcnow() + timedelta(days=JWT_EXPIRE_DAYS)
    session = AuthSession(user_id=user_id, token_id=uuid.uuid4().hex, expires_at=expire)
    payload = {"sub": user_id, "jti": session.token_id, "exp": expire}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM), session


def decode_token(token: str) -> AuthSession | None:
    """Decodes the JWT; None if invalid or expired."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError:
        return None
    if not payload.get("sub") or not payload.get("jti"):
        return None
    return AuthSession(
        user_id=payload["sub"],
        token_id=payload["jti"],
        expires_at=datetime.utcfromtimestamp(payload["exp"]),
    )


AuthListener = Callable[[str, AuthSession | None], None]


class Subscription:
    """Handle returned by AuthEvents.subscribe; the owner releases it with unsubscribe()."""

    def __init__(self, events: "AuthEvents", callback: AuthListener):
        self._events = events
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._events._remove(self)
            self.active = False


class AuthEvents:
    """Explicit subscription point for sign-in / sign-out notifications."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []

    def subscribe(self, callback: AuthListener) -> Subscription:
        # same callback twice -> same handle, so a listener is never registered twice
        for sub in self._subscriptions:
            if sub.callback == callback:
                return sub
        sub = Subscription(self, callback)
        self._subscriptions.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)

    def emit(self, event: str, session: AuthSession | None) -> None:
        for sub in list(self._subscriptions):
            sub.callback(event, session)


auth_events = AuthEvents()
