"""SQLAlchemy models package."""
from todo_app.models.audit_log import AuditLog
from todo_app.models.auth import AuthSession, LoginAttempt, RefreshToken, SessionRevocation
from todo_app.models.user import EmailVerification, PasswordReset, RoleGrant, User

__all__ = [
    "AuditLog",
    "AuthSession",
    "EmailVerification",
    "LoginAttempt",
    "PasswordReset",
    "RefreshToken",
    "RoleGrant",
    "SessionRevocation",
    "User",
]
