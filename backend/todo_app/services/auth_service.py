"""Login, refresh, logout and session revocation.

Every public method is one unit of work: the session, chain and audit writes
it makes are committed together or not at all. Two branches commit before
failing on purpose: a failed login keeps its ``LoginAttempt`` row, and a
detected refresh-token reuse keeps the revoked session.
"""
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from todo_app.clock import Clock, utcnow
from todo_app.database import unit_of_work
from todo_app.models.auth import AuthSession, LoginAttempt, RevokedBy, SessionRevocation
from todo_app.models.base import generate_id
from todo_app.models.user import RoleGrant, User, UserStatus
from todo_app.services.audit import AuditTrail
from todo_app.services.errors import RefreshTokenError, TokenReuseDetected, Unauthorized
from todo_app.services.passwords import PasswordHasher, check_password_policy
from todo_app.services.predicates import live_query
from todo_app.services.refresh_chain import RefreshChainManager
from todo_app.services.session_store import SessionStore
from todo_app.services.tokens import Principal, Role, TokenIssuer

logger = logging.getLogger(__name__)

UNKNOWN_IP = "unknown"
PASSWORD_CHANGE_REASON = "password_change"


@dataclass
class TokenBundle:
    access: str
    refresh: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass
class AuthorizedResult:
    subject_id: str
    role: Role
    session_id: str
    token: TokenBundle


@dataclass
class RevocationSummary:
    id: str
    session_id: str
    revoked_at: datetime
    revoked_by: str
    reason: str | None

    @classmethod
    def from_record(cls, record: SessionRevocation) -> "RevocationSummary":
        return cls(
            id=record.id,
            session_id=record.session_id,
            revoked_at=record.revoked_at,
            revoked_by=record.revoked_by,
            reason=record.reason,
        )


@dataclass
class PasswordChangeResult:
    subject_id: str
    revoked_sessions: list[RevocationSummary] = field(default_factory=list)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def find_user_by_email(db: Session, email: str) -> User | None:
    """Case-insensitive lookup among live users."""
    return live_query(db, User, func.lower(User.email) == normalize_email(email)).first()


def has_active_grant(db: Session, user_id: str, role: Role | str) -> bool:
    role_value = role.value if isinstance(role, Role) else role
    grant = live_query(
        db,
        RoleGrant,
        RoleGrant.user_id == user_id,
        RoleGrant.role == role_value,
        RoleGrant.revoked_at.is_(None),
    ).first()
    return grant is not None


class AuthService:
    def __init__(
        self,
        db: Session,
        issuer: TokenIssuer,
        hasher: PasswordHasher,
        clock: Clock = utcnow,
        audit: AuditTrail | None = None,
        new_id: Callable[[], str] = generate_id,
        password_min_length: int = 8,
        password_max_length: int = 64,
    ):
        self.db = db
        self.issuer = issuer
        self.hasher = hasher
        self.clock = clock
        self.new_id = new_id
        self.audit = audit or AuditTrail(db, clock, new_id)
        self.sessions = SessionStore(db, clock, new_id)
        self.chain = RefreshChainManager(db, issuer, self.sessions, clock, new_id)
        self.password_min_length = password_min_length
        self.password_max_length = password_max_length

    # Login

    def login(
        self,
        email: str,
        password: str,
        role: Role,
        stay_signed_in: bool = False,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthorizedResult:
        """Authenticate with email and password and open a new session.

        Every failure looks the same to the caller; the reason is only kept
        on the ``LoginAttempt`` row and in the log.
        """
        ip = ip or UNKNOWN_IP
        normalized = normalize_email(email)
        user = find_user_by_email(self.db, normalized)

        failure = self._login_failure(user, password, role)
        if failure is not None:
            with unit_of_work(self.db):
                self._record_attempt(normalized, user, False, ip, user_agent, failure)
                self.audit.append(
                    "login_failed",
                    actor_user_id=user.id if user else None,
                    resource_type="user",
                    resource_id=user.id if user else None,
                    success=False,
                    ip=ip,
                    user_agent=user_agent,
                )
            logger.info("Login rejected (%s) for user %s", failure, user.id if user else "<unknown>")
            raise Unauthorized()

        with unit_of_work(self.db):
            now = self.clock()
            ttl = self.issuer.refresh_ttl(stay_signed_in)
            session = self.sessions.create_session(user.id, role.value, ip, user_agent, now + ttl)
            principal = Principal(subject_id=user.id, role=role, session_id=session.id)
            _, refresh = self.chain.issue_root(session, principal, ttl)
            session.expires_at = refresh.expires_at
            access = self.issuer.issue_access_token(principal)

            user.last_login_at = now
            self._record_attempt(normalized, user, True, ip, user_agent, None)
            self.audit.append(
                "login",
                actor_user_id=user.id,
                resource_type="session",
                resource_id=session.id,
                ip=ip,
                user_agent=user_agent,
            )
            result = AuthorizedResult(
                subject_id=user.id,
                role=role,
                session_id=session.id,
                token=TokenBundle(
                    access=access.value,
                    refresh=refresh.value,
                    access_expires_at=access.expires_at,
                    refresh_expires_at=refresh.expires_at,
                ),
            )

        logger.info("User %s logged in as %s (session %s)", result.subject_id, role.value, result.session_id)
        return result

    def _login_failure(self, user: User | None, password: str, role: Role) -> str | None:
        if user is None:
            self.hasher.burn(password)
            return "unknown_email"
        if not self.hasher.verify(password, user.password_hash):
            return "invalid_password"
        if user.status != UserStatus.ACTIVE.value:
            return "inactive_account"
        if not user.email_verified:
            return "email_not_verified"
        if not has_active_grant(self.db, user.id, role):
            return "role_not_granted"
        return None

    def _record_attempt(
        self,
        email: str,
        user: User | None,
        success: bool,
        ip: str,
        user_agent: str | None,
        failure_reason: str | None,
    ) -> LoginAttempt:
        attempt = LoginAttempt(
            id=self.new_id(),
            user_id=user.id if user else None,
            email=email,
            success=success,
            ip=ip,
            user_agent=user_agent,
            failure_reason=failure_reason,
            occurred_at=self.clock(),
        )
        self.db.add(attempt)
        return attempt

    # Refresh

    def refresh(
        self,
        token: str,
        role: Role | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> AuthorizedResult:
        """Rotate a refresh token and pair the successor with a new access token."""
        with unit_of_work(self.db):
            try:
                rotation = self.chain.rotate(token, expected_role=role)
            except TokenReuseDetected as exc:
                session = self.sessions.get(exc.session_id)
                self.audit.append(
                    "refresh_reuse_detected",
                    actor_user_id=session.user_id if session else None,
                    resource_type="session",
                    resource_id=exc.session_id,
                    success=False,
                    ip=ip,
                    user_agent=user_agent,
                )
                # the revocation must survive the rejected request
                self.db.commit()
                raise Unauthorized() from exc
            except RefreshTokenError as exc:
                logger.info("Refresh rejected: %s", exc.message)
                raise Unauthorized() from exc

            session = rotation.session
            user = live_query(self.db, User, User.id == session.user_id).first()
            if (
                user is None
                or user.status != UserStatus.ACTIVE.value
                or not has_active_grant(self.db, user.id, session.role)
            ):
                logger.info("Refresh rejected: user %s can no longer sign in", session.user_id)
                raise Unauthorized()

            self.sessions.extend(session, rotation.token.expires_at)
            access = self.issuer.issue_access_token(rotation.principal)
            self.audit.append(
                "refresh",
                actor_user_id=user.id,
                resource_type="session",
                resource_id=session.id,
                ip=ip,
                user_agent=user_agent,
            )
            result = AuthorizedResult(
                subject_id=user.id,
                role=rotation.principal.role,
                session_id=session.id,
                token=TokenBundle(
                    access=access.value,
                    refresh=rotation.token.value,
                    access_expires_at=access.expires_at,
                    refresh_expires_at=rotation.token.expires_at,
                ),
            )
        return result

    # Logout

    def logout(
        self,
        subject_id: str,
        session_id: str | None = None,
        reason: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> RevocationSummary | None:
        """Revoke the caller's session.

        Idempotent: when the targeted session is already revoked its existing
        revocation record is returned unchanged. With no session at all the
        user's latest revocation (or None) is returned.
        """
        with unit_of_work(self.db):
            session = self._owned_session(subject_id, session_id)
            if session is None:
                session = self.sessions.find_most_recent_active_session_for_user(subject_id)

            if session is None:
                revocation = self.sessions.find_latest_revocation_for_user(subject_id)
                self.audit.append(
                    "logout",
                    actor_user_id=subject_id,
                    resource_type="session",
                    resource_id=revocation.session_id if revocation else None,
                    ip=ip,
                    user_agent=user_agent,
                )
                return RevocationSummary.from_record(revocation) if revocation else None

            revocation = self.sessions.revoke(session.id, reason, RevokedBy.USER)
            self.chain.revoke_current(session.id, reason)
            self.audit.append(
                "logout",
                actor_user_id=subject_id,
                resource_type="session",
                resource_id=session.id,
                ip=ip,
                user_agent=user_agent,
            )
            summary = RevocationSummary.from_record(revocation)

        logger.info("User %s logged out of session %s", subject_id, summary.session_id)
        return summary

    # Revoke other sessions

    def revoke_other_sessions(
        self,
        subject_id: str,
        current_session_id: str | None = None,
        include_current: bool = False,
        reason: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> list[RevocationSummary]:
        with unit_of_work(self.db):
            summaries = self._revoke_others(subject_id, current_session_id, include_current, reason)
            self.audit.append(
                "revoke_other_sessions",
                actor_user_id=subject_id,
                resource_type="session",
                resource_id=current_session_id,
                ip=ip,
                user_agent=user_agent,
            )
        return summaries

    def _revoke_others(
        self,
        subject_id: str,
        current_session_id: str | None,
        include_current: bool,
        reason: str | None,
    ) -> list[RevocationSummary]:
        exclude_id = None
        if not include_current:
            current = self._owned_session(subject_id, current_session_id)
            if current is None or not current.is_active_at(self.clock()):
                current = self.sessions.find_most_recent_active_session_for_user(subject_id)
            exclude_id = current.id if current else None

        summaries = []
        for session in self.sessions.list_active_other_sessions(subject_id, exclude_id):
            revocation = self.sessions.revoke(session.id, reason, RevokedBy.USER)
            self.chain.revoke_chain(session.id, reason)
            summaries.append(RevocationSummary.from_record(revocation))

        if summaries:
            logger.info("Revoked %d session(s) of user %s", len(summaries), subject_id)
        return summaries

    def _owned_session(self, subject_id: str, session_id: str | None) -> AuthSession | None:
        if not session_id:
            return None
        session = self.sessions.get(session_id)
        if session is None or session.user_id != subject_id:
            return None
        return session

    # Password change

    def change_password(
        self,
        subject_id: str,
        current_password: str,
        new_password: str,
        revoke_other_sessions: bool = False,
        current_session_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> PasswordChangeResult:
        check_password_policy(new_password, self.password_min_length, self.password_max_length)

        with unit_of_work(self.db):
            user = live_query(self.db, User, User.id == subject_id).first()
            if (
                user is None
                or user.status != UserStatus.ACTIVE.value
                or not user.email_verified
                or not self.hasher.verify(current_password, user.password_hash)
            ):
                logger.info("Password change rejected for user %s", subject_id)
                raise Unauthorized()

            user.password_hash = self.hasher.hash(new_password)
            user.updated_at = self.clock()

            revoked = []
            if revoke_other_sessions:
                revoked = self._revoke_others(subject_id, current_session_id, False, PASSWORD_CHANGE_REASON)

            self.audit.append(
                "change_password",
                actor_user_id=subject_id,
                resource_type="user",
                resource_id=subject_id,
                ip=ip,
                user_agent=user_agent,
            )
        return PasswordChangeResult(subject_id=subject_id, revoked_sessions=revoked)
