"""Authentication/session models."""
import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import validates

from todo_app.database import Base
from todo_app.models.base import SoftDeleteMixin, TimestampMixin, generate_id


class RefreshTokenState(str, enum.Enum):
    ACTIVE = "active"
    ROTATED = "rotated"
    REVOKED = "revoked"


class RevokedBy(str, enum.Enum):
    USER = "user"
    SYSTEM = "system"


class AuthSession(TimestampMixin, SoftDeleteMixin, Base):
    """One login context of a user on one client."""

    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_user_active", "user_id", "revoked_at"),
        Index("ix_sessions_expires_at", "expires_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(32), nullable=False)
    ip = Column(String(45), nullable=False)
    user_agent = Column(String(255))
    issued_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime)
    revoked_reason = Column(String(255))

    def is_active_at(self, now) -> bool:
        return self.revoked_at is None and self.deleted_at is None and self.expires_at > now


class RefreshToken(TimestampMixin, SoftDeleteMixin, Base):
    """A link in the refresh chain of a session.

    Only the SHA-256 digest of the issued token string is stored. At most one
    token per session is current (neither rotated nor revoked).
    """

    __tablename__ = "refresh_tokens"
    __table_args__ = (
        Index("ix_refresh_tokens_session_current", "session_id", "rotated_at", "revoked_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_id = Column(String(36), ForeignKey("refresh_tokens.id", ondelete="SET NULL"))
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    issued_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    rotated_at = Column(DateTime)
    revoked_at = Column(DateTime)
    revoked_reason = Column(String(255))

    @validates("rotated_at", "revoked_at")
    def validate_one_way(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current:
            raise ValueError(f"{key} is already set and cannot change")
        return value

    @property
    def state(self) -> RefreshTokenState:
        if self.revoked_at is not None:
            return RefreshTokenState.REVOKED
        if self.rotated_at is not None:
            return RefreshTokenState.ROTATED
        return RefreshTokenState.ACTIVE


class SessionRevocation(TimestampMixin, Base):
    """Audit companion of a revoked session; at most one per session."""

    __tablename__ = "session_revocations"

    id = Column(String(36), primary_key=True, default=generate_id)
    session_id = Column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), unique=True, nullable=False)
    revoked_at = Column(DateTime, nullable=False)
    revoked_by = Column(String(16), nullable=False)
    reason = Column(String(255))

class LoginAttempt(Base):
    """Write-only record of every login call."""

    __tablename__ = "login_attempts"
    __table_args__ = (
        Index("ix_login_attempts_email_occurred", "email", "occurred_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    email = Column(String(255), nullable=False)
    success = Column(Boolean, nullable=False)
    ip = Column(String(45), nullable=False)
    user_agent = Column(String(255))
    failure_reason = Column(String(64))
    occurred_at = Column(DateTime, nullable=False)
