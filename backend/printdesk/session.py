# Current user resolution: per-request UserContext and the process-wide session listener
import logging
from dataclasses import dataclass
from datetime import datetime

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, sessionmaker

from printdesk.auth import SIGNED_IN, SIGNED_OUT, AuthSession, Subscription, auth_events, decode_token
from printdesk.db import get_db
from printdesk.errors import AuthenticationError, PermissionDenied
from printdesk.models import Role, User, UserRole

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    name: str
    mobile_number: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def load_user(db: Session, user_id: str) -> CurrentUser | None:
    """Builds the in-memory user from the profile row joined with its role (default: user)."""
    row = (
        db.query(User, UserRole.role)
        .outerjoin(UserRole, UserRole.user_id == User.id)
        .filter(User.id == user_id)
        .first()
    )
    if not row:
        return None
    user, role = row
    return CurrentUser(id=user.id, name=user.name, mobile_number=user.mobile_number, role=role or Role.USER)


class UserContext:
    """
    Identity for one unit of work, passed by reference to whatever needs it.
    ``is_loading`` stays True until the first set()/clear(); readers must
    treat that as "not known yet", not as "anonymous".
    """

    def __init__(self):
        self.user: CurrentUser | None = None
        self.session: AuthSession | None = None
        self.is_loading = True

    def set(self, user: CurrentUser, session: AuthSession | None = None) -> None:
        self.user = user
        self.session = session
        self.is_loading = False

    def clear(self) -> None:
        self.user = None
        self.session = None
        self.is_loading = False


class SessionListener:
    """
    Reacts to auth events. SIGNED_IN derives the user (profile + role);
    SIGNED_OUT revokes the token so it stops working before it expires.
    A revocation is kept only until the token would have expired anyway.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.revoked: dict[str, datetime] = {}

    def __call__(self, event: str, session: AuthSession | None) -> None:
        if event == SIGNED_IN and session is not None:
            db = self.session_factory()
            try:
                user = load_user(db, session.user_id)
            finally:
                db.close()
            if user:
                logger.info(f"[AUTH] signed in {user.id} ({user.role})")
        elif event == SIGNED_OUT and session is not None:
            self.prune()
            self.revoked[session.token_id] = session.expires_at
            logger.info(f"[AUTH] signed out {session.user_id}")

    def prune(self, now: datetime | None = None) -> None:
        """Forgets revocations of tokens that have expired."""
        now = now or datetime.utcnow()
        for token_id in [t for t, expires_at in self.revoked.items() if expires_at <= now]:
            del self.revoked[token_id]

    def is_revoked(self, token_id: str) -> bool:
        self.prune()
        return token_id in self.revoked


_listener: SessionListener | None = None
_subscription: Subscription | None = None


def start_session_listener(session_factory: sessionmaker) -> Subscription:
    """Registers the listener once per process; later calls return the same handle."""
    global _listener, _subscription
    if _subscription is not None and _subscription.active:
        return _subscription
    _listener = SessionListener(session_factory)
    _subscription = auth_events.subscribe(_listener)
    return _subscription


def stop_session_listener() -> None:
    global _listener, _subscription
    if _subscription is not None:
        _subscription.unsubscribe()
    _listener = None
    _subscription = None


def get_session_listener() -> SessionListener | None:
    return _listener


def is_token_revoked(token_id: str) -> bool:
    return _listener is not None and _listener.is_revoked(token_id)


async def get_user_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> UserContext:
    """Dependency: resolves the bearer token into a UserContext (cleared when anonymous)."""
    ctx = UserContext()
    session = decode_token(credentials.credentials) if credentials and credentials.credentials else None
    if session is None or is_token_revoked(session.token_id):
        ctx.clear()
        return ctx
    user = load_user(db, session.user_id)
    if user is None:
        ctx.clear()
    else:
        ctx.set(user, session)
    return ctx


async def get_current_user(ctx: UserContext = Depends(get_user_context)) -> CurrentUser:
    """Dependency: 401 unless a valid, non-revoked token was sent."""
    if ctx.user is None:
        raise AuthenticationError("Invalid or expired token")
    return ctx.user


async def require_customer(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.is_admin:
        raise PermissionDenied("Admins manage the queue; use a user account to submit print jobs")
    return user


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise PermissionDenied("Admin access required")
    return user
