"""API dependencies: wiring of services and bearer-token authentication."""
from datetime import timedelta

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from todo_app.api.errors import unauthorized
from todo_app.clock import Clock, utcnow
from todo_app.config import Settings, get_settings
from todo_app.database import get_db
from todo_app.models.user import User, UserStatus
from todo_app.services.auth_service import AuthService
from todo_app.services.mailer import Mailer
from todo_app.services.passwords import PasswordHasher
from todo_app.services.predicates import live_query
from todo_app.services.registration import RegistrationService
from todo_app.services.session_queries import SessionQueries
from todo_app.services.session_store import SessionStore
from todo_app.services.tokens import Principal, Role, TokenError, TokenIssuer, TokenType

__all__ = [
    "get_db",
    "get_clock",
    "get_token_issuer",
    "get_password_hasher",
    "get_auth_service",
    "get_registration_service",
    "get_session_queries",
    "get_authenticated_principal",
    "get_current_principal",
    "get_request_ip",
    "require_authenticated_role",
    "require_role",
]

_bearer_scheme = HTTPBearer(auto_error=False)


def get_clock() -> Clock:
    return utcnow


def get_token_issuer(
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> TokenIssuer:
    return TokenIssuer.from_settings(settings, clock)


def get_password_hasher(settings: Settings = Depends(get_settings)) -> PasswordHasher:
    return PasswordHasher(rounds=settings.bcrypt_rounds)


def get_auth_service(
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
    hasher: PasswordHasher = Depends(get_password_hasher),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
) -> AuthService:
    return AuthService(
        db,
        issuer,
        hasher,
        clock=clock,
        password_min_length=settings.password_min_length,
        password_max_length=settings.password_max_length,
    )


def get_registration_service(
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_settings),
) -> RegistrationService:
    return RegistrationService(
        db,
        hasher,
        mailer=Mailer(settings),
        clock=clock,
        verification_ttl=timedelta(hours=settings.email_verification_expire_hours),
        reset_ttl=timedelta(minutes=settings.password_reset_expire_minutes),
        password_min_length=settings.password_min_length,
        password_max_length=settings.password_max_length,
    )


def get_session_queries(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SessionQueries:
    return SessionQueries(db, clock)


def get_request_ip(request: Request) -> str | None:
    """Extract best-effort client IP for session metadata."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def get_authenticated_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    db: Session = Depends(get_db),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> Principal:
    """Principal of a valid access token whose user is live and active.

    The token's session may already be revoked; logout relies on that.
    """
    if credentials is None:
        raise unauthorized("Not authenticated")
    try:
        principal = issuer.decode(credentials.credentials, TokenType.ACCESS)
    except TokenError as exc:
        raise unauthorized("Could not validate credentials") from exc

    user = live_query(db, User, User.id == principal.subject_id).first()
    if user is None or user.status != UserStatus.ACTIVE.value:
        raise unauthorized("Could not validate credentials")
    return principal


def get_current_principal(
    principal: Principal = Depends(get_authenticated_principal),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> Principal:
    """Principal whose session is still active."""
    if not principal.session_id:
        raise unauthorized("Could not validate credentials")
    session = SessionStore(db, clock).find_active_session(principal.session_id)
    if session is None or session.user_id != principal.subject_id:
        raise unauthorized("Session is no longer active")
    return principal


def require_role(role: Role):
    """Dependency factory: the current principal must act in ``role``."""

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role is not role:
            raise unauthorized("Insufficient role")
        return principal

    return dependency


def require_authenticated_role(role: Role):
    """Like ``require_role`` but tolerates a revoked session (logout)."""

    def dependency(principal: Principal = Depends(get_authenticated_principal)) -> Principal:
        if principal.role is not role:
            raise unauthorized("Insufficient role")
        return principal

    return dependency
