import pytest

from conftest import PASSWORD

from todo_app.models.audit_log import AuditLog
from todo_app.models.auth import AuthSession, LoginAttempt, RefreshToken
from todo_app.models.user import RoleGrant, User, UserStatus
from todo_app.services.errors import Unauthorized
from todo_app.services.tokens import Role, TokenType


def test_successful_login_opens_session(auth_service, make_user, db, clock, issuer):
    user = make_user()

    result = auth_service.login("a@example.com", PASSWORD, Role.TODO_USER, ip="10.0.0.1", user_agent="pytest")

    session = db.get(AuthSession, result.session_id)
    assert session.user_id == user.id
    assert session.role == "todoUser"
    assert session.ip == "10.0.0.1"
    assert session.expires_at == result.token.refresh_expires_at
    root = db.query(RefreshToken).one()
    assert root.parent_id is None
    assert root.session_id == session.id

    principal = issuer.decode(result.token.access, TokenType.ACCESS)
    assert principal.subject_id == user.id
    assert principal.session_id == session.id

    assert db.get(User, user.id).last_login_at == clock()
    attempt = db.query(LoginAttempt).one()
    assert attempt.success is True
    assert attempt.user_id == user.id
    assert db.query(AuditLog).filter(AuditLog.action == "login").count() == 1


def test_email_lookup_is_case_insensitive(auth_service, make_user):
    user = make_user(email="mixed@example.com")

    result = auth_service.login("  MIXED@Example.com ", PASSWORD, Role.TODO_USER)

    assert result.subject_id == user.id


def test_missing_ip_is_recorded_as_unknown(auth_service, make_user, db):
    make_user()

    result = auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)

    assert db.get(AuthSession, result.session_id).ip == "unknown"


@pytest.mark.parametrize(
    "email, password, user_kwargs, reason",
    [
        ("nobody@example.com", PASSWORD, {}, "unknown_email"),
        ("a@example.com", "wrong-password", {}, "invalid_password"),
        ("a@example.com", PASSWORD, {"status": UserStatus.SUSPENDED}, "inactive_account"),
        ("a@example.com", PASSWORD, {"email_verified": False}, "email_not_verified"),
        ("a@example.com", PASSWORD, {"roles": (Role.GUEST_VISITOR,)}, "role_not_granted"),
    ],
)
def test_failed_login_is_recorded(auth_service, make_user, db, email, password, user_kwargs, reason):
    make_user(**user_kwargs)

    with pytest.raises(Unauthorized) as excinfo:
        auth_service.login(email, password, Role.TODO_USER)

    assert excinfo.value.message == "Invalid authentication credentials"
    db.rollback()
    attempt = db.query(LoginAttempt).one()
    assert attempt.success is False
    assert attempt.failure_reason == reason
    assert db.query(AuthSession).count() == 0
    assert db.query(AuditLog).filter(AuditLog.action == "login_failed").count() == 1


def test_unknown_email_still_spends_hashing_work(auth_service, monkeypatch):
    calls = []
    monkeypatch.setattr(auth_service.hasher, "burn", lambda password: calls.append(password) or False)

    with pytest.raises(Unauthorized):
        auth_service.login("nobody@example.com", PASSWORD, Role.TODO_USER)

    assert calls == [PASSWORD]


def test_revoked_role_grant_blocks_login(auth_service, make_user, db, clock):
    user = make_user()
    grant = db.query(RoleGrant).filter(RoleGrant.user_id == user.id).one()
    grant.revoked_at = clock()
    db.commit()

    with pytest.raises(Unauthorized):
        auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)


def test_soft_deleted_user_cannot_login(auth_service, make_user, db, clock):
    user = make_user()
    user.deleted_at = clock()
    db.commit()

    with pytest.raises(Unauthorized):
        auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)
    db.rollback()
    assert db.query(LoginAttempt).one().failure_reason == "unknown_email"


def test_refresh_rejected_once_user_is_suspended(auth_service, make_user, db):
    user = make_user()
    result = auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)
    db.get(User, user.id).status = UserStatus.SUSPENDED.value
    db.commit()

    with pytest.raises(Unauthorized):
        auth_service.refresh(result.token.refresh)

    # nothing rotated: the chain still has one current token
    assert db.query(RefreshToken).filter(RefreshToken.rotated_at.is_(None)).count() == 1


def test_refresh_extends_session(auth_service, make_user, db, clock):
    make_user()
    result = auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)
    clock.advance(days=3)

    refreshed = auth_service.refresh(result.token.refresh)

    session = db.get(AuthSession, result.session_id)
    assert refreshed.session_id == result.session_id
    assert session.expires_at == refreshed.token.refresh_expires_at
    assert refreshed.token.access_expires_at > clock()


def test_logout_without_session_id_picks_most_recent(auth_service, make_user, db, clock):
    user = make_user()
    first = auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)
    clock.advance(minutes=1)
    second = auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)

    summary = auth_service.logout(user.id)

    assert summary.session_id == second.session_id
    assert summary.revoked_by == "user"
    assert db.get(AuthSession, first.session_id).revoked_at is None


def test_logout_ignores_session_of_another_user(auth_service, make_user, db):
    make_user(email="a@example.com")
    other = make_user(email="b@example.com")
    victim = auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)
    own = auth_service.login("b@example.com", PASSWORD, Role.TODO_USER)

    summary = auth_service.logout(other.id, session_id=victim.session_id)

    assert summary.session_id == own.session_id
    assert db.get(AuthSession, victim.session_id).revoked_at is None


def test_logout_with_no_sessions_returns_latest_revocation(auth_service, make_user):
    user = make_user()
    assert auth_service.logout(user.id) is None

    result = auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)
    first = auth_service.logout(user.id, session_id=result.session_id)

    again = auth_service.logout(user.id)
    assert again == first


def test_include_current_revokes_everything(auth_service, make_user, db):
    user = make_user()
    current = auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)
    auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)

    revoked = auth_service.revoke_other_sessions(user.id, current.session_id, include_current=True)

    assert len(revoked) == 2
    assert db.query(AuthSession).filter(AuthSession.revoked_at.is_(None)).count() == 0
    assert db.query(RefreshToken).filter(RefreshToken.revoked_at.is_(None)).count() == 0
