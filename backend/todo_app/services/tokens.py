"""Signed bearer tokens (JWT) for access and refresh."""
import calendar
import enum
import hashlib
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from todo_app.clock import Clock, utcnow
from todo_app.config import Settings


class Role(str, enum.Enum):
    TODO_USER = "todoUser"
    SYSTEM_ADMIN = "systemAdmin"
    GUEST_VISITOR = "guestVisitor"


class TokenType(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class Principal:
    """Identity carried by a token: who, in which role, through which session."""

    subject_id: str
    role: Role
    session_id: str | None = None


@dataclass(frozen=True)
class IssuedToken:
    value: str
    expires_at: datetime


class TokenError(ValueError):
    """Signature, type or claim check failed."""


def hash_token(token: str) -> str:
    """Hash a token string before persisting or looking it up."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _timestamp(value: datetime) -> int:
    return calendar.timegm(value.utctimetuple())


class TokenIssuer:
    """Mints and checks HS256 JWTs with fixed lifetimes."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: str = "todo-app",
        access_ttl: timedelta = timedelta(hours=1),
        refresh_ttl: timedelta = timedelta(days=7),
        persistent_refresh_ttl: timedelta = timedelta(days=30),
        clock: Clock = utcnow,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.access_ttl = access_ttl
        self.default_refresh_ttl = refresh_ttl
        self.persistent_refresh_ttl = persistent_refresh_ttl
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock = utcnow) -> "TokenIssuer":
        return cls(
            secret_key=settings.secret_key,
            algorithm=settings.algorithm,
            issuer=settings.token_issuer,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
            persistent_refresh_ttl=timedelta(days=settings.persistent_refresh_token_expire_days),
            clock=clock,
        )

    def refresh_ttl(self, persistent: bool = False) -> timedelta:
        return self.persistent_refresh_ttl if persistent else self.default_refresh_ttl

    def issue_access_token(self, principal: Principal) -> IssuedToken:
        """Create a JWT access token."""
        return self._issue(principal, TokenType.ACCESS, self.access_ttl)

    def issue_refresh_token(self, principal: Principal, ttl: timedelta | None = None) -> IssuedToken:
        """Create a JWT refresh token."""
        return self._issue(principal, TokenType.REFRESH, ttl or self.default_refresh_ttl)

    def _issue(self, principal: Principal, token_type: TokenType, ttl: timedelta) -> IssuedToken:
        now = self.clock()
        expires_at = now + ttl
        payload: dict[str, Any] = {
            "sub": principal.subject_id,
            "role": principal.role.value,
            "type": token_type.value,
            "jti": uuid.uuid4().hex,
            "iss": self.issuer,
            "iat": _timestamp(now),
            "exp": _timestamp(expires_at),
        }
        if principal.session_id:
            payload["sid"] = principal.session_id
        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        return IssuedToken(value=token, expires_at=expires_at)

    def decode(self, token: str, expected_type: TokenType, verify_exp: bool = True) -> Principal:
        """Verify signature, issuer and type; return the carried principal.

        Raises TokenError on any failure.
        """
        if not token:
            raise TokenError("Token is required")
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise TokenError("Invalid or expired token") from exc

        # Expiry is judged against the injected clock, not the wall clock.
        exp = payload.get("exp")
        if not isinstance(exp, int):
            raise TokenError("Token expiry is missing")
        if verify_exp and exp <= _timestamp(self.clock()):
            raise TokenError("Invalid or expired token")

        if payload.get("type") != expected_type.value:
            raise TokenError("Invalid token type")

        subject = payload.get("sub")
        if not subject:
            raise TokenError("Token subject is missing")

        try:
            role = Role(payload.get("role"))
        except ValueError as exc:
            raise TokenError("Unknown role claim") from exc

        return Principal(subject_id=subject, role=role, session_id=payload.get("sid"))
