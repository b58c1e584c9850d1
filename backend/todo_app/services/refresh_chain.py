"""Refresh-token chains: single-use rotation with reuse detection.

Each session owns a chain of refresh tokens linked through ``parent_id``.
Exactly one link is current (neither rotated nor revoked). Presenting any
other link is treated as a replay of a stolen token: the whole session and
every token under it are revoked.
"""
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging

from sqlalchemy.orm import Session

from todo_app.clock import Clock, utcnow
from todo_app.models.auth import AuthSession, RefreshToken, RefreshTokenState, RevokedBy
from todo_app.models.base import generate_id
from todo_app.services.errors import ExpiredToken, InvalidToken, TokenReuseDetected
from todo_app.services.predicates import current_token_criteria, live_query
from todo_app.services.session_store import SessionStore
from todo_app.services.tokens import (
    IssuedToken,
    Principal,
    Role,
    TokenError,
    TokenIssuer,
    TokenType,
    hash_token,
)

logger = logging.getLogger(__name__)

REUSE_REASON = "refresh_token_reuse"


def revoke_session_tokens(db: Session, session_id: str, reason: str | None, now: datetime) -> int:
    """Revoke every not-yet-revoked token of the session, rotated or not."""
    return (
        db.query(RefreshToken)
        .filter(RefreshToken.session_id == session_id, RefreshToken.revoked_at.is_(None))
        .update(
            {"revoked_at": now, "revoked_reason": reason, "updated_at": now},
            synchronize_session="fetch",
        )
    )


@dataclass
class RotationResult:
    record: RefreshToken
    token: IssuedToken
    session: AuthSession
    principal: Principal


class RefreshChainManager:
    def __init__(
        self,
        db: Session,
        issuer: TokenIssuer,
        sessions: SessionStore,
        clock: Clock = utcnow,
        new_id: Callable[[], str] = generate_id,
    ):
        self.db = db
        self.issuer = issuer
        self.sessions = sessions
        self.clock = clock
        self.new_id = new_id

    def issue_root(self, session: AuthSession, principal: Principal, ttl: timedelta) -> tuple[RefreshToken, IssuedToken]:
        """Start the chain of a freshly opened session."""
        return self._issue(session, principal, ttl, parent_id=None)

    def find_presented(self, value: str) -> RefreshToken | None:
        if not value:
            return None
        return live_query(self.db, RefreshToken, RefreshToken.token_hash == hash_token(value)).first()

    def rotate(self, presented: str, expected_role: Role | None = None) -> RotationResult:
        """Exchange the current token of a chain for its successor.

        Raises InvalidToken, ExpiredToken or TokenReuseDetected. On reuse the
        session has already been revoked in the current transaction; the
        caller must commit that compensation before surfacing the error.
        """
        record = self.find_presented(presented)
        if record is None:
            raise InvalidToken()

        # The stored digest decides validity; the signature is checked second.
        try:
            claims = self.issuer.decode(presented, TokenType.REFRESH, verify_exp=False)
        except TokenError as exc:
            raise InvalidToken() from exc

        session = self.sessions.get(record.session_id)
        if session is None or claims.subject_id != session.user_id:
            raise InvalidToken()

        # A stale token is a replay wherever it is presented.
        if record.state is not RefreshTokenState.ACTIVE or session.revoked_at is not None:
            self._punish(session, record)

        if expected_role is not None and session.role != expected_role.value:
            raise InvalidToken("Refresh token belongs to another role")

        now = self.clock()
        if record.expires_at <= now or session.expires_at <= now:
            raise ExpiredToken()

        marked = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.id == record.id, *current_token_criteria(RefreshToken))
            .update({"rotated_at": now, "updated_at": now}, synchronize_session=False)
        )
        if marked != 1:
            # Lost a race with a concurrent rotation or revocation of the same token.
            self.db.expire(record)
            self._punish(session, record)
        self.db.expire(record)

        principal = Principal(subject_id=session.user_id, role=Role(session.role), session_id=session.id)
        ttl = record.expires_at - record.issued_at
        child, token = self._issue(session, principal, ttl, parent_id=record.id)
        logger.debug("Rotated refresh token %s -> %s in session %s", record.id, child.id, session.id)
        return RotationResult(record=child, token=token, session=session, principal=principal)

    def revoke_chain(self, session_id: str, reason: str | None) -> int:
        return revoke_session_tokens(self.db, session_id, reason, self.clock())

    def revoke_current(self, session_id: str, reason: str | None) -> int:
        now = self.clock()
        return (
            self.db.query(RefreshToken)
            .filter(RefreshToken.session_id == session_id, *current_token_criteria(RefreshToken))
            .update(
                {"revoked_at": now, "revoked_reason": reason, "updated_at": now},
                synchronize_session="fetch",
            )
        )

    def _issue(
        self,
        session: AuthSession,
        principal: Principal,
        ttl: timedelta,
        parent_id: str | None,
    ) -> tuple[RefreshToken, IssuedToken]:
        now = self.clock()
        token = self.issuer.issue_refresh_token(principal, ttl)
        record = RefreshToken(
            id=self.new_id(),
            session_id=session.id,
            parent_id=parent_id,
            token_hash=hash_token(token.value),
            issued_at=now,
            expires_at=token.expires_at,
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        self.db.flush()
        return record, token

    def _punish(self, session: AuthSession, record: RefreshToken) -> None:
        logger.warning(
            "Refresh token %s reused in session %s of user %s; revoking session",
            record.id,
            session.id,
            session.user_id,
        )
        self.sessions.revoke(session.id, REUSE_REASON, RevokedBy.SYSTEM)
        self.revoke_chain(session.id, REUSE_REASON)
        raise TokenReuseDetected(session.id)
