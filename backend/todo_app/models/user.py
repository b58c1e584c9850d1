"""User and role membership models."""
import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from todo_app.database import Base
from todo_app.models.base import SoftDeleteMixin, TimestampMixin, generate_id


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DISABLED = "disabled"


class User(TimestampMixin, SoftDeleteMixin, Base):
    """User account."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=UserStatus.ACTIVE.value)
    email_verified = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime)


class RoleGrant(TimestampMixin, SoftDeleteMixin, Base):
    """Membership of a user in one of the application roles."""

    __tablename__ = "role_grants"
    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_role_grant_user_role"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(32), nullable=False)
    granted_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime)


class EmailVerification(TimestampMixin, Base):
    """Single-use email verification token (stored hashed)."""

    __tablename__ = "email_verifications"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime)

    user = relationship("User")


class PasswordReset(TimestampMixin, SoftDeleteMixin, Base):
    """Single-use password reset token (stored hashed).

    Requests for unknown emails are stored too, with no user attached, so the
    request endpoint behaves the same either way.
    """

    __tablename__ = "password_resets"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)
    email = Column(String(255), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    requested_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime)
    requested_by_ip = Column(String(45))
