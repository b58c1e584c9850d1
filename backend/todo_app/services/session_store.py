"""Persistent login sessions."""
from collections.abc import Callable
from datetime import datetime
import logging

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from todo_app.clock import Clock, utcnow
from todo_app.database import dialect_name
from todo_app.models.auth import AuthSession, RevokedBy, SessionRevocation
from todo_app.models.base import generate_id
from todo_app.services.predicates import active_session_criteria, live_query

logger = logging.getLogger(__name__)

_CONFLICT_INSERTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


class SessionStore:
    """Reads and writes ``AuthSession`` rows inside the caller's transaction.

    Nothing here commits; the orchestrator owning the unit of work does.
    """

    def __init__(self, db: Session, clock: Clock = utcnow, new_id: Callable[[], str] = generate_id):
        self.db = db
        self.clock = clock
        self.new_id = new_id

    def create_session(
        self,
        user_id: str,
        role: str,
        ip: str,
        user_agent: str | None,
        expires_at: datetime,
    ) -> AuthSession:
        now = self.clock()
        session = AuthSession(
            id=self.new_id(),
            user_id=user_id,
            role=role,
            ip=ip,
            user_agent=user_agent,
            issued_at=now,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        self.db.add(session)
        self.db.flush()
        logger.info("Opened session %s for user %s (%s)", session.id, user_id, role)
        return session

    def get(self, session_id: str) -> AuthSession | None:
        """Any live (not soft-deleted) session, revoked or not."""
        return live_query(self.db, AuthSession, AuthSession.id == session_id).first()

    def find_active_session(self, session_id: str) -> AuthSession | None:
        return live_query(
            self.db,
            AuthSession,
            AuthSession.id == session_id,
            *active_session_criteria(AuthSession, self.clock()),
        ).first()

    def find_most_recent_active_session_for_user(self, user_id: str) -> AuthSession | None:
        return (
            live_query(
                self.db,
                AuthSession,
                AuthSession.user_id == user_id,
                *active_session_criteria(AuthSession, self.clock()),
            )
            .order_by(AuthSession.issued_at.desc(), AuthSession.created_at.desc())
            .first()
        )

    def list_active_other_sessions(self, user_id: str, exclude_session_id: str | None) -> list[AuthSession]:
        criteria = [AuthSession.user_id == user_id, *active_session_criteria(AuthSession, self.clock())]
        if exclude_session_id:
            criteria.append(AuthSession.id != exclude_session_id)
        return live_query(self.db, AuthSession, *criteria).order_by(AuthSession.issued_at.desc()).all()

    def find_revocation(self, session_id: str) -> SessionRevocation | None:
        return self.db.query(SessionRevocation).filter(SessionRevocation.session_id == session_id).first()

    def find_latest_revocation_for_user(self, user_id: str) -> SessionRevocation | None:
        return (
            self.db.query(SessionRevocation)
            .join(AuthSession, SessionRevocation.session_id == AuthSession.id)
            .filter(AuthSession.user_id == user_id, AuthSession.deleted_at.is_(None))
            .order_by(SessionRevocation.revoked_at.desc(), SessionRevocation.created_at.desc())
            .first()
        )

    def revoke(self, session_id: str, reason: str | None, actor: RevokedBy) -> SessionRevocation:
        """Revoke a session and make sure exactly one revocation record exists.

        Already-revoked sessions keep their original ``revoked_at`` and reason.
        """
        self.db.flush()
        now = self.clock()
        updated = (
            self.db.query(AuthSession)
            .filter(AuthSession.id == session_id, AuthSession.revoked_at.is_(None))
            .update(
                {"revoked_at": now, "revoked_reason": reason, "updated_at": now},
                synchronize_session=False,
            )
        )
        if updated:
            logger.info("Revoked session %s by %s (%s)", session_id, actor.value, reason)

        session = self.db.get(AuthSession, session_id)
        if session is not None:
            # bulk update bypassed the identity map
            self.db.refresh(session)
        revoked_at = now
        if session is not None and session.revoked_at is not None:
            revoked_at = session.revoked_at
            if not updated:
                reason = session.revoked_reason
        return self.record_revocation(session_id, revoked_at, actor, reason)

    def record_revocation(
        self,
        session_id: str,
        revoked_at: datetime,
        actor: RevokedBy,
        reason: str | None,
    ) -> SessionRevocation:
        """Insert the revocation record unless one already exists for the session."""
        existing = self.find_revocation(session_id)
        if existing is not None:
            return existing

        now = self.clock()
        values = {
            "id": self.new_id(),
            "session_id": session_id,
            "revoked_at": revoked_at,
            "revoked_by": actor.value,
            "reason": reason,
            "created_at": now,
            "updated_at": now,
        }
        insert = _CONFLICT_INSERTS.get(dialect_name(self.db))
        if insert is not None:
            statement = insert(SessionRevocation).values(**values).on_conflict_do_nothing(
                index_elements=["session_id"]
            )
            self.db.execute(statement)
        else:
            try:
                with self.db.begin_nested():
                    self.db.add(SessionRevocation(**values))
            except IntegrityError:
                # a concurrent revocation won; keep its row
                logger.debug("Revocation of session %s already recorded", session_id)

        return self.db.query(SessionRevocation).filter(SessionRevocation.session_id == session_id).one()

    def extend(self, session: AuthSession, expires_at: datetime) -> None:
        """Push the session expiry forward; never shortens it."""
        if expires_at > session.expires_at:
            session.expires_at = expires_at
            session.updated_at = self.clock()
            self.db.flush()
