from datetime import timedelta

import pytest

from todo_app.models.auth import RevokedBy, SessionRevocation
from todo_app.services import session_store
from todo_app.services.session_store import SessionStore


@pytest.fixture
def store(db, clock):
    return SessionStore(db, clock)


@pytest.fixture
def user(make_user):
    return make_user()


def _open(store, user, clock, days=7, ip="10.0.0.1"):
    return store.create_session(user.id, "todoUser", ip, "pytest", clock() + timedelta(days=days))


def test_create_session_is_active(store, user, clock):
    session = _open(store, user, clock)

    assert session.issued_at == clock()
    assert session.is_active_at(clock())
    assert store.find_active_session(session.id).id == session.id


def test_expired_session_is_not_active(store, user, clock):
    session = _open(store, user, clock, days=1)
    clock.advance(days=1)

    assert store.find_active_session(session.id) is None
    assert store.get(session.id) is not None


def test_soft_deleted_session_is_invisible(store, user, clock, db):
    session = _open(store, user, clock)
    session.deleted_at = clock()
    db.flush()

    assert store.get(session.id) is None
    assert store.find_active_session(session.id) is None
    assert store.find_most_recent_active_session_for_user(user.id) is None


def test_most_recent_active_session(store, user, clock):
    older = _open(store, user, clock)
    clock.advance(minutes=1)
    newer = _open(store, user, clock)

    assert store.find_most_recent_active_session_for_user(user.id).id == newer.id

    store.revoke(newer.id, "logout", RevokedBy.USER)
    assert store.find_most_recent_active_session_for_user(user.id).id == older.id


def test_revoke_is_idempotent(store, user, clock, db):
    session = _open(store, user, clock)
    first = store.revoke(session.id, "logout", RevokedBy.USER)
    revoked_at = session.revoked_at
    clock.advance(minutes=10)

    second = store.revoke(session.id, "other reason", RevokedBy.SYSTEM)

    assert second.id == first.id
    assert second.revoked_at == revoked_at
    assert second.reason == "logout"
    assert second.revoked_by == "user"
    db.refresh(session)
    assert session.revoked_at == revoked_at
    assert session.revoked_reason == "logout"
    assert db.query(SessionRevocation).count() == 1


def test_record_revocation_keeps_existing_row(store, user, clock, db):
    session = _open(store, user, clock)
    first = store.record_revocation(session.id, clock(), RevokedBy.USER, "logout")
    second = store.record_revocation(session.id, clock() + timedelta(hours=1), RevokedBy.SYSTEM, "again")

    assert first.id == second.id
    assert db.query(SessionRevocation).count() == 1


def test_record_revocation_yields_to_concurrent_insert(store, user, clock, db, monkeypatch):
    session = _open(store, user, clock)
    # another transaction recorded the revocation after our lookup
    db.execute(
        SessionRevocation.__table__.insert().values(
            id="concurrent",
            session_id=session.id,
            revoked_at=clock(),
            revoked_by="system",
            reason="elsewhere",
            created_at=clock(),
            updated_at=clock(),
        )
    )
    monkeypatch.setattr(session_store, "_CONFLICT_INSERTS", {})
    monkeypatch.setattr(store, "find_revocation", lambda session_id: None)

    revocation = store.record_revocation(session.id, clock(), RevokedBy.USER, "logout")

    assert revocation.id == "concurrent"
    assert revocation.reason == "elsewhere"
    assert db.query(SessionRevocation).count() == 1


def test_list_active_other_sessions(store, user, make_user, clock):
    current = _open(store, user, clock)
    other = _open(store, user, clock)
    revoked = _open(store, user, clock)
    store.revoke(revoked.id, None, RevokedBy.USER)
    _open(store, make_user(email="someone@example.com"), clock)

    others = store.list_active_other_sessions(user.id, current.id)

    assert [s.id for s in others] == [other.id]
    assert len(store.list_active_other_sessions(user.id, None)) == 2


def test_latest_revocation_for_user(store, user, clock):
    assert store.find_latest_revocation_for_user(user.id) is None

    first = _open(store, user, clock)
    second = _open(store, user, clock)
    store.revoke(first.id, "a", RevokedBy.USER)
    clock.advance(minutes=1)
    store.revoke(second.id, "b", RevokedBy.USER)

    assert store.find_latest_revocation_for_user(user.id).session_id == second.id


def test_extend_never_shortens(store, user, clock):
    session = _open(store, user, clock)
    original = session.expires_at

    store.extend(session, original - timedelta(days=1))
    assert session.expires_at == original

    store.extend(session, original + timedelta(days=1))
    assert session.expires_at == original + timedelta(days=1)
