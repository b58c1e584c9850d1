"""Pytest configuration and fixtures."""
import os
from collections.abc import Generator
from datetime import datetime, timedelta

os.environ.setdefault("SECRET_KEY", "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from todo_app.api import deps
from todo_app.clock import utcnow
from todo_app.database import Base
from todo_app.main import app
from todo_app.models.user import RoleGrant, User, UserStatus
from todo_app.services.auth_service import AuthService
from todo_app.services.passwords import PasswordHasher
from todo_app.services.tokens import Role, TokenIssuer

PASSWORD = "Passw0rd!"
SECRET_KEY = os.environ["SECRET_KEY"]


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(utcnow().replace(microsecond=0))


@pytest.fixture
def issuer(clock) -> TokenIssuer:
    return TokenIssuer(secret_key=SECRET_KEY, clock=clock)


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def auth_service(db, issuer, hasher, clock) -> AuthService:
    return AuthService(db, issuer, hasher, clock=clock)


@pytest.fixture
def make_user(db, hasher, clock):
    """Factory for users that can log in right away."""

    def factory(
        email: str = "a@example.com",
        password: str = PASSWORD,
        roles: tuple[Role, ...] = (Role.TODO_USER,),
        status: UserStatus = UserStatus.ACTIVE,
        email_verified: bool = True,
    ) -> User:
        now = clock()
        user = User(
            email=email,
            password_hash=hasher.hash(password),
            status=status.value,
            email_verified=email_verified,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        db.flush()
        for role in roles:
            db.add(RoleGrant(user_id=user.id, role=role.value, granted_at=now))
        db.commit()
        return user

    return factory


@pytest.fixture
def client(db, clock) -> Generator[TestClient, None, None]:
    """Test client bound to the per-test database and clock."""

    def override_get_db():
        yield db

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
