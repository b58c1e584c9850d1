from datetime import timedelta

import pytest

from conftest import PASSWORD

from todo_app.models.auth import AuthSession, RefreshToken, SessionRevocation
from todo_app.models.user import EmailVerification, PasswordReset, RoleGrant, User
from todo_app.services.errors import Conflict, InvalidRequest, Unauthorized
from todo_app.services.mailer import Mailer
from todo_app.services.registration import RegistrationService
from todo_app.services.tokens import Role

BASE = "/api/auth/todo-user"


class RecordingMailer:
    def __init__(self):
        self.sent = []
        self.resets = []

    def send_verification(self, to_email, token):
        self.sent.append((to_email, token))
        return True

    def send_password_reset(self, to_email, token):
        self.resets.append((to_email, token))
        return True


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def registration(db, hasher, mailer, clock):
    return RegistrationService(db, hasher, mailer=mailer, clock=clock)


def test_join_creates_unverified_user_with_grant(registration, mailer, db):
    result = registration.join("New@Example.com", "Passw0rd!", Role.TODO_USER)

    user = db.get(User, result.subject_id)
    assert user.email == "new@example.com"
    assert user.status == "active"
    assert user.email_verified is False
    grant = db.query(RoleGrant).filter(RoleGrant.user_id == user.id).one()
    assert grant.role == "todoUser"
    assert grant.revoked_at is None
    assert mailer.sent == [("new@example.com", result.verification_token)]
    verification = db.query(EmailVerification).one()
    assert verification.token_hash != result.verification_token


def test_join_rejects_duplicate_email(registration, make_user):
    make_user(email="taken@example.com")

    with pytest.raises(Conflict):
        registration.join("TAKEN@example.com", "Passw0rd!", Role.TODO_USER)


def test_join_enforces_password_policy(registration):
    with pytest.raises(InvalidRequest):
        registration.join("new@example.com", "short", Role.TODO_USER)


def test_verify_email_is_idempotent(registration, db):
    result = registration.join("new@example.com", "Passw0rd!", Role.TODO_USER)

    user = registration.verify_email(result.verification_token)
    assert user.email_verified is True
    consumed_at = db.query(EmailVerification).one().consumed_at

    again = registration.verify_email(result.verification_token)
    assert again.id == user.id
    assert db.query(EmailVerification).one().consumed_at == consumed_at


def test_verify_email_rejects_unknown_and_expired_tokens(registration, clock):
    with pytest.raises(Unauthorized):
        registration.verify_email("nope")

    result = registration.join("new@example.com", "Passw0rd!", Role.TODO_USER)
    clock.advance(hours=24, seconds=1)

    with pytest.raises(Unauthorized):
        registration.verify_email(result.verification_token)


def test_join_verify_login_over_http(client, monkeypatch):
    sent = []
    monkeypatch.setattr(Mailer, "send_verification", lambda self, to_email, token: sent.append(token) or True)

    joined = client.post(f"{BASE}/join", json={"email": "new@example.com", "password": "Passw0rd!"})
    assert joined.status_code == 201
    assert joined.json()["role"] == "todoUser"

    login = {"email": "new@example.com", "password": "Passw0rd!"}
    assert client.post(f"{BASE}/login", json=login).status_code == 401

    verified = client.post(f"{BASE}/email/verify", json={"token": sent[0]})
    assert verified.status_code == 200
    assert verified.json()["email_verified"] is True

    assert client.post(f"{BASE}/login", json=login).status_code == 200


def test_duplicate_join_over_http_is_conflict(client, make_user):
    make_user(email="taken@example.com")

    response = client.post(f"{BASE}/join", json={"email": "taken@example.com", "password": "Passw0rd!"})

    assert response.status_code == 409


def test_join_with_short_password_is_rejected(client):
    response = client.post(f"{BASE}/join", json={"email": "new@example.com", "password": "short"})
    assert response.status_code == 422


def test_unknown_verification_token_over_http(client):
    response = client.post(f"{BASE}/email/verify", json={"token": "nope"})
    assert response.status_code == 401


def test_verification_ttl_is_configurable(db, hasher, clock):
    service = RegistrationService(db, hasher, clock=clock, verification_ttl=timedelta(hours=1))
    service.join("new@example.com", "Passw0rd!", Role.TODO_USER)

    assert db.query(EmailVerification).one().expires_at == clock() + timedelta(hours=1)


def test_password_reset_request_looks_the_same_for_unknown_email(registration, mailer, make_user, db, clock):
    user = make_user(email="a@example.com")

    known = registration.request_password_reset("A@example.com", ip="10.0.0.1")
    unknown = registration.request_password_reset("nobody@example.com")

    assert mailer.resets == [("a@example.com", known.reset_token)]
    assert known.expires_at == clock() + timedelta(minutes=30)
    assert unknown.expires_at == known.expires_at
    rows = {row.email: row for row in db.query(PasswordReset)}
    assert rows["a@example.com"].user_id == user.id
    assert rows["a@example.com"].requested_by_ip == "10.0.0.1"
    assert rows["nobody@example.com"].user_id is None
    assert rows["a@example.com"].token_hash != known.reset_token


def test_password_reset_confirm_sets_password_and_revokes_sessions(registration, auth_service, make_user, hasher, db):
    user = make_user()
    first = auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)
    second = auth_service.login("a@example.com", PASSWORD, Role.TODO_USER)
    requested = registration.request_password_reset("a@example.com")

    result = registration.confirm_password_reset(requested.reset_token, "N3wPassw0rd!")

    assert result.subject_id == user.id
    assert sorted(s.session_id for s in result.revoked_sessions) == sorted([first.session_id, second.session_id])
    db.refresh(user)
    assert hasher.verify("N3wPassw0rd!", user.password_hash)
    assert all(s.revoked_reason == "password_reset" for s in db.query(AuthSession))
    assert {r.revoked_by for r in db.query(SessionRevocation)} == {"system"}
    assert db.query(RefreshToken).filter(RefreshToken.revoked_at.is_(None)).count() == 0
    assert db.query(PasswordReset).one().consumed_at == result.consumed_at


def test_password_reset_token_is_single_use_and_expires(registration, make_user, clock):
    make_user()
    used = registration.request_password_reset("a@example.com")
    registration.confirm_password_reset(used.reset_token, "N3wPassw0rd!")

    with pytest.raises(InvalidRequest):
        registration.confirm_password_reset(used.reset_token, "An0therPass!")

    stale = registration.request_password_reset("a@example.com")
    clock.advance(minutes=30)
    with pytest.raises(InvalidRequest):
        registration.confirm_password_reset(stale.reset_token, "An0therPass!")

    with pytest.raises(InvalidRequest):
        registration.confirm_password_reset("nope", "An0therPass!")


def test_password_reset_for_unknown_email_cannot_be_confirmed(registration):
    requested = registration.request_password_reset("nobody@example.com")

    with pytest.raises(InvalidRequest):
        registration.confirm_password_reset(requested.reset_token, "N3wPassw0rd!")


def test_password_reset_enforces_password_policy(registration, make_user, db):
    make_user()
    requested = registration.request_password_reset("a@example.com")

    with pytest.raises(InvalidRequest):
        registration.confirm_password_reset(requested.reset_token, "short")
    assert db.query(PasswordReset).one().consumed_at is None


def test_password_reset_over_http(client, make_user, monkeypatch):
    sent = []
    monkeypatch.setattr(Mailer, "send_password_reset", lambda self, to_email, token: sent.append(token) or True)
    make_user()

    known = client.post(f"{BASE}/password/reset/request", json={"email": "a@example.com"})
    unknown = client.post(f"{BASE}/password/reset/request", json={"email": "nobody@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json().keys() == unknown.json().keys()
    assert known.json()["note"] == unknown.json()["note"]
    assert "token" not in known.json()
    assert len(sent) == 1

    confirm = {"token": sent[0], "new_password": "N3wPassw0rd!"}
    confirmed = client.post(f"{BASE}/password/reset/confirm", json=confirm)
    assert confirmed.status_code == 200
    assert confirmed.json()["consumed_at"].endswith("Z")

    assert client.post(f"{BASE}/password/reset/confirm", json=confirm).status_code == 400
    old = {"email": "a@example.com", "password": PASSWORD}
    assert client.post(f"{BASE}/login", json=old).status_code == 401
    new = {"email": "a@example.com", "password": "N3wPassw0rd!"}
    assert client.post(f"{BASE}/login", json=new).status_code == 200
