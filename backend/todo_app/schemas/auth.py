"""Authentication schemas."""
from pydantic import BaseModel, EmailStr, Field

from todo_app.clock import isoformat
from todo_app.services.auth_service import AuthorizedResult, RevocationSummary
from todo_app.services.registration import PasswordResetCompleted, PasswordResetRequested


class JoinRequest(BaseModel):
    """Registration request."""

    email: EmailStr
    password: str = Field(..., min_length=8, max_length=64)


class LoginRequest(BaseModel):
    """Login request."""

    email: EmailStr
    password: str
    stay_signed_in: bool = False


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    reason: str | None = Field(None, max_length=255)


class RevokeOtherSessionsRequest(BaseModel):
    include_current: bool = False
    reason: str | None = Field(None, max_length=255)


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=64)
    revoke_other_sessions: bool = False


class EmailVerifyRequest(BaseModel):
    token: str = Field(..., min_length=1)


class TokenBundleResponse(BaseModel):
    """Access/refresh pair with their expiries."""

    access: str
    refresh: str
    access_expires_at: str
    refresh_expires_at: str
    token_type: str = "bearer"


class AuthorizedResponse(BaseModel):
    """Login and refresh response."""

    subject_id: str
    role: str
    session_id: str
    token: TokenBundleResponse

    @classmethod
    def from_result(cls, result: AuthorizedResult) -> "AuthorizedResponse":
        return cls(
            subject_id=result.subject_id,
            role=result.role.value,
            session_id=result.session_id,
            token=TokenBundleResponse(
                access=result.token.access,
                refresh=result.token.refresh,
                access_expires_at=isoformat(result.token.access_expires_at),
                refresh_expires_at=isoformat(result.token.refresh_expires_at),
            ),
        )


class JoinResponse(BaseModel):
    subject_id: str
    email: str
    role: str


class VerifyEmailResponse(BaseModel):
    subject_id: str
    email: str
    email_verified: bool


class RevocationResponse(BaseModel):
    """Summary of a session revocation.

    Every field is null when logout found no session to revoke.
    """

    id: str | None = None
    session_id: str | None = None
    revoked_at: str | None = None
    revoked_by: str | None = None
    reason: str | None = None

    @classmethod
    def from_summary(cls, summary: RevocationSummary | None) -> "RevocationResponse":
        if summary is None:
            return cls()
        return cls(
            id=summary.id,
            session_id=summary.session_id,
            revoked_at=isoformat(summary.revoked_at),
            revoked_by=summary.revoked_by,
            reason=summary.reason,
        )


class RevokeOtherSessionsResponse(BaseModel):
    revoked: list[RevocationResponse]
    count: int


class PasswordChangeResponse(BaseModel):
    subject_id: str
    revoked_sessions: list[RevocationResponse]


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirmRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=64)


class PasswordResetRequestedResponse(BaseModel):
    """Acknowledgement that reads the same whether or not the email is registered."""

    email: str
    requested_at: str
    expires_at: str
    note: str = "If an account exists for this email, you will receive a password reset code shortly."

    @classmethod
    def from_result(cls, result: PasswordResetRequested) -> "PasswordResetRequestedResponse":
        return cls(
            email=result.email,
            requested_at=isoformat(result.requested_at),
            expires_at=isoformat(result.expires_at),
        )


class PasswordResetCompletedResponse(BaseModel):
    id: str
    subject_id: str
    email: str
    requested_at: str
    expires_at: str
    consumed_at: str
    revoked_sessions: list[RevocationResponse]

    @classmethod
    def from_result(cls, result: PasswordResetCompleted) -> "PasswordResetCompletedResponse":
        return cls(
            id=result.id,
            subject_id=result.subject_id,
            email=result.email,
            requested_at=isoformat(result.requested_at),
            expires_at=isoformat(result.expires_at),
            consumed_at=isoformat(result.consumed_at),
            revoked_sessions=[RevocationResponse.from_summary(summary) for summary in result.revoked_sessions],
        )
