"""Account registration, email verification and password reset."""
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import secrets

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from todo_app.clock import Clock, utcnow
from todo_app.database import unit_of_work
from todo_app.models.auth import RevokedBy
from todo_app.models.base import generate_id
from todo_app.models.user import EmailVerification, PasswordReset, RoleGrant, User, UserStatus
from todo_app.services.audit import AuditTrail
from todo_app.services.auth_service import RevocationSummary, find_user_by_email, normalize_email
from todo_app.services.errors import Conflict, InvalidRequest, Unauthorized
from todo_app.services.mailer import Mailer
from todo_app.services.passwords import PasswordHasher, check_password_policy
from todo_app.services.predicates import live_query
from todo_app.services.refresh_chain import revoke_session_tokens
from todo_app.services.session_store import SessionStore
from todo_app.services.tokens import Role, hash_token

logger = logging.getLogger(__name__)

PASSWORD_RESET_REASON = "password_reset"


@dataclass
class JoinResult:
    subject_id: str
    email: str
    role: Role
    # Raw verification token; only handed back to trusted callers (tests, CLI).
    verification_token: str


@dataclass
class PasswordResetRequested:
    email: str
    requested_at: datetime
    expires_at: datetime
    # Raw reset token; never part of the HTTP response.
    reset_token: str


@dataclass
class PasswordResetCompleted:
    id: str
    subject_id: str
    email: str
    requested_at: datetime
    expires_at: datetime
    consumed_at: datetime
    revoked_sessions: list[RevocationSummary] = field(default_factory=list)


class RegistrationService:
    def __init__(
        self,
        db: Session,
        hasher: PasswordHasher,
        mailer: Mailer | None = None,
        clock: Clock = utcnow,
        audit: AuditTrail | None = None,
        new_id: Callable[[], str] = generate_id,
        verification_ttl: timedelta = timedelta(hours=24),
        reset_ttl: timedelta = timedelta(minutes=30),
        password_min_length: int = 8,
        password_max_length: int = 64,
    ):
        self.db = db
        self.hasher = hasher
        self.mailer = mailer
        self.clock = clock
        self.new_id = new_id
        self.audit = audit or AuditTrail(db, clock, new_id)
        self.verification_ttl = verification_ttl
        self.reset_ttl = reset_ttl
        self.password_min_length = password_min_length
        self.password_max_length = password_max_length

    def join(
        self,
        email: str,
        password: str,
        role: Role,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> JoinResult:
        """Create an unverified account holding ``role`` and send its verification code."""
        check_password_policy(password, self.password_min_length, self.password_max_length)
        normalized = normalize_email(email)

        with unit_of_work(self.db):
            if find_user_by_email(self.db, normalized) is not None:
                raise Conflict("Email already registered")

            now = self.clock()
            user = User(
                id=self.new_id(),
                email=normalized,
                password_hash=self.hasher.hash(password),
                status=UserStatus.ACTIVE.value,
                email_verified=False,
                created_at=now,
                updated_at=now,
            )
            self.db.add(user)
            try:
                self.db.flush()
            except IntegrityError as exc:
                raise Conflict("Email already registered") from exc
            self.db.add(
                RoleGrant(
                    id=self.new_id(),
                    user_id=user.id,
                    role=role.value,
                    granted_at=now,
                    created_at=now,
                    updated_at=now,
                )
            )

            raw_token = secrets.token_urlsafe(32)
            self.db.add(
                EmailVerification(
                    id=self.new_id(),
                    user_id=user.id,
                    token_hash=hash_token(raw_token),
                    expires_at=now + self.verification_ttl,
                    created_at=now,
                    updated_at=now,
                )
            )
            self.audit.append(
                "join",
                actor_user_id=user.id,
                resource_type="user",
                resource_id=user.id,
                ip=ip,
                user_agent=user_agent,
            )
            result = JoinResult(subject_id=user.id, email=normalized, role=role, verification_token=raw_token)

        logger.info("Registered user %s as %s", result.subject_id, role.value)
        if self.mailer is not None:
            self.mailer.send_verification(result.email, raw_token)
        return result

    def verify_email(self, token: str, ip: str | None = None, user_agent: str | None = None) -> User:
        if not token:
            raise Unauthorized("Invalid verification token")

        with unit_of_work(self.db):
            verification = (
                self.db.query(EmailVerification)
                .filter(EmailVerification.token_hash == hash_token(token))
                .first()
            )
            if verification is None:
                raise Unauthorized("Invalid verification token")

            user = verification.user
            if user is None or user.deleted_at is not None:
                raise Unauthorized("Invalid verification token")

            if verification.consumed_at is not None:
                if user.email_verified:
                    return user
                raise Unauthorized("Invalid verification token")

            now = self.clock()
            if verification.expires_at <= now:
                raise Unauthorized("Verification token expired")

            verification.consumed_at = now
            user.email_verified = True
            user.updated_at = now
            self.audit.append(
                "verify_email",
                actor_user_id=user.id,
                resource_type="user",
                resource_id=user.id,
                ip=ip,
                user_agent=user_agent,
            )

        logger.info("Verified email for user %s", user.id)
        return user

    # Password reset

    def request_password_reset(
        self,
        email: str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> PasswordResetRequested:
        """Record a reset request and mail its code to the account, if there is one.

        Unknown emails get a request row too, without a user, so callers cannot
        tell whether the address is registered.
        """
        normalized = normalize_email(email)

        with unit_of_work(self.db):
            user = find_user_by_email(self.db, normalized)
            now = self.clock()
            raw_token = secrets.token_urlsafe(32)
            reset = PasswordReset(
                id=self.new_id(),
                user_id=user.id if user else None,
                email=normalized,
                token_hash=hash_token(raw_token),
                requested_at=now,
                expires_at=now + self.reset_ttl,
                requested_by_ip=ip,
                created_at=now,
                updated_at=now,
            )
            self.db.add(reset)
            self.audit.append(
                "password_reset_request",
                actor_user_id=user.id if user else None,
                resource_type="password_reset",
                resource_id=reset.id,
                ip=ip,
                user_agent=user_agent,
            )
            result = PasswordResetRequested(
                email=normalized,
                requested_at=now,
                expires_at=reset.expires_at,
                reset_token=raw_token,
            )
            recipient = user.email if user else None

        if recipient is not None and self.mailer is not None:
            self.mailer.send_password_reset(recipient, raw_token)
        return result

    def confirm_password_reset(
        self,
        token: str,
        new_password: str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> PasswordResetCompleted:
        """Set a new password with a reset code and end every open session of the user."""
        check_password_policy(new_password, self.password_min_length, self.password_max_length)
        if not token:
            raise InvalidRequest("Invalid or expired token")

        with unit_of_work(self.db):
            now = self.clock()
            reset = live_query(
                self.db,
                PasswordReset,
                PasswordReset.token_hash == hash_token(token),
                PasswordReset.consumed_at.is_(None),
                PasswordReset.expires_at > now,
            ).first()
            if reset is None:
                raise InvalidRequest("Invalid or expired token")

            if reset.user_id is not None:
                user = live_query(self.db, User, User.id == reset.user_id).first()
            else:
                user = find_user_by_email(self.db, reset.email)
            if user is None:
                raise InvalidRequest("Invalid or expired token")

            user.password_hash = self.hasher.hash(new_password)
            user.updated_at = now
            reset.consumed_at = now
            reset.updated_at = now

            sessions = SessionStore(self.db, self.clock, self.new_id)
            revoked = []
            for session in sessions.list_active_other_sessions(user.id, None):
                revocation = sessions.revoke(session.id, PASSWORD_RESET_REASON, RevokedBy.SYSTEM)
                revoke_session_tokens(self.db, session.id, PASSWORD_RESET_REASON, now)
                revoked.append(RevocationSummary.from_record(revocation))

            self.audit.append(
                "password_reset_confirm",
                actor_user_id=user.id,
                resource_type="password_reset",
                resource_id=reset.id,
                ip=ip,
                user_agent=user_agent,
            )
            result = PasswordResetCompleted(
                id=reset.id,
                subject_id=user.id,
                email=reset.email,
                requested_at=reset.requested_at,
                expires_at=reset.expires_at,
                consumed_at=now,
                revoked_sessions=revoked,
            )

        logger.info("Password reset for user %s; revoked %d session(s)", result.subject_id, len(revoked))
        return result
