"""Session and refresh-token projections."""
from datetime import datetime

from pydantic import BaseModel

from todo_app.clock import isoformat
from todo_app.models.auth import AuthSession, RefreshToken


class SessionResponse(BaseModel):
    id: str
    user_id: str
    role: str
    ip: str
    user_agent: str | None
    issued_at: str
    expires_at: str
    revoked_at: str | None
    revoked_reason: str | None
    active: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_model(cls, session: AuthSession, now: datetime) -> "SessionResponse":
        return cls(
            id=session.id,
            user_id=session.user_id,
            role=session.role,
            ip=session.ip,
            user_agent=session.user_agent,
            issued_at=isoformat(session.issued_at),
            expires_at=isoformat(session.expires_at),
            revoked_at=isoformat(session.revoked_at),
            revoked_reason=session.revoked_reason,
            active=session.is_active_at(now),
            created_at=isoformat(session.created_at),
            updated_at=isoformat(session.updated_at),
        )


class SessionListResponse(BaseModel):
    items: list[SessionResponse]
    total: int
    page: int
    limit: int


class RefreshTokenResponse(BaseModel):
    """Refresh token metadata; the token value and its hash are never exposed."""

    id: str
    session_id: str
    parent_id: str | None
    state: str
    issued_at: str
    expires_at: str
    rotated_at: str | None
    revoked_at: str | None
    revoked_reason: str | None
    created_at: str

    @classmethod
    def from_model(cls, token: RefreshToken) -> "RefreshTokenResponse":
        return cls(
            id=token.id,
            session_id=token.session_id,
            parent_id=token.parent_id,
            state=token.state.value,
            issued_at=isoformat(token.issued_at),
            expires_at=isoformat(token.expires_at),
            rotated_at=isoformat(token.rotated_at),
            revoked_at=isoformat(token.revoked_at),
            revoked_reason=token.revoked_reason,
            created_at=isoformat(token.created_at),
        )
