"""Read-only projections over sessions and their refresh tokens."""
import enum

from sqlalchemy.orm import Query, Session

from todo_app.clock import Clock, utcnow
from todo_app.models.auth import AuthSession, RefreshToken
from todo_app.models.user import User
from todo_app.services.errors import NotFound
from todo_app.services.predicates import live_query


class SessionStatusFilter(str, enum.Enum):
    ALL = "all"
    ACTIVE = "active"
    REVOKED = "revoked"


class SessionQueries:
    """Owner-scoped and admin-scoped lookups.

    A session owned by someone else is reported exactly like a missing one.
    """

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def list_sessions(
        self,
        user_id: str,
        status: SessionStatusFilter = SessionStatusFilter.ALL,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[AuthSession], int]:
        query = live_query(self.db, AuthSession, AuthSession.user_id == user_id)
        if status is SessionStatusFilter.ACTIVE:
            query = query.filter(AuthSession.revoked_at.is_(None), AuthSession.expires_at > self.clock())
        elif status is SessionStatusFilter.REVOKED:
            query = query.filter(AuthSession.revoked_at.is_not(None))
        return self._page(query.order_by(AuthSession.issued_at.desc()), page, limit)

    def list_sessions_for_admin(
        self,
        user_id: str,
        status: SessionStatusFilter = SessionStatusFilter.ALL,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[AuthSession], int]:
        if live_query(self.db, User, User.id == user_id).first() is None:
            raise NotFound("User not found")
        return self.list_sessions(user_id, status, page, limit)

    def get_session(self, user_id: str, session_id: str) -> AuthSession:
        session = live_query(
            self.db,
            AuthSession,
            AuthSession.id == session_id,
            AuthSession.user_id == user_id,
        ).first()
        if session is None:
            raise NotFound("Session not found")
        return session

    def list_refresh_tokens(
        self,
        user_id: str,
        session_id: str,
        rotated: bool | None = None,
        revoked: bool | None = None,
    ) -> list[RefreshToken]:
        session = self.get_session(user_id, session_id)
        query = live_query(self.db, RefreshToken, RefreshToken.session_id == session.id)
        if rotated is not None:
            query = query.filter(
                RefreshToken.rotated_at.is_not(None) if rotated else RefreshToken.rotated_at.is_(None)
            )
        if revoked is not None:
            query = query.filter(
                RefreshToken.revoked_at.is_not(None) if revoked else RefreshToken.revoked_at.is_(None)
            )
        return query.order_by(RefreshToken.issued_at.asc(), RefreshToken.created_at.asc()).all()

    def get_refresh_token(self, user_id: str, session_id: str, token_id: str) -> RefreshToken:
        session = self.get_session(user_id, session_id)
        token = live_query(
            self.db,
            RefreshToken,
            RefreshToken.id == token_id,
            RefreshToken.session_id == session.id,
        ).first()
        if token is None:
            raise NotFound("Refresh token not found")
        return token

    @staticmethod
    def _page(query: Query, page: int, limit: int):
        total = query.count()
        items = query.offset((page - 1) * limit).limit(limit).all()
        return items, total
