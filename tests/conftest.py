"""
Test Configuration and Fixtures

Shared fixtures for Gatekeepr tests: an isolated in-memory database seeded
with the system roles, a TestClient bound to it, and users at each role.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import gatekeepr.models  # noqa: F401
from gatekeepr.core.rate_limiter import limiter
from gatekeepr.core.security import create_access_token, hash_password
from gatekeepr.db.base import Base
from gatekeepr.db.seeds.seed_roles import seed_roles
from gatekeepr.db.session import enable_sqlite_foreign_keys, get_db
from gatekeepr.main import app
from gatekeepr.models.role import Role, UserRole
from gatekeepr.models.user import User

TEST_PASSWORD = "Password123!"
_PASSWORD_HASH = hash_password(TEST_PASSWORD)


# ==================== Database Fixtures ====================


@pytest.fixture(scope="function")
def engine():
    """In-memory SQLite engine with foreign keys enforced."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    """Session over a freshly seeded schema."""
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    seed_roles(session, verbose=False)
    yield session
    session.close()


# ==================== Application Fixtures ====================


@pytest.fixture(scope="function")
def client(db_session) -> Generator[TestClient, None, None]:
    """Test client whose requests share the test session."""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


# ==================== User Fixtures ====================


def make_user(db: Session, email: str, *role_names: str, is_active: bool = True) -> User:
    user = User(
        email=email,
        hashed_password=_PASSWORD_HASH,
        first_name=email.split("@")[0].title(),
        is_active=is_active,
    )
    db.add(user)
    db.flush()
    for name in role_names:
        role = db.query(Role).filter(Role.name == name).one()
        db.add(UserRole(user_id=user.id, role_id=role.id))
    db.commit()
    return user


def auth_headers(user: User) -> dict:
    token = create_access_token(user.id, user.email, [])
    return {"Authorization": f"Bearer {token}"}


def role_id(db: Session, name: str) -> int:
    return db.query(Role.id).filter(Role.name == name).scalar()


@pytest.fixture
def super_admin(db_session) -> User:
    return make_user(db_session, "root@example.com", "super_admin")


@pytest.fixture
def admin(db_session) -> User:
    return make_user(db_session, "admin@example.com", "admin")


@pytest.fixture
def manager(db_session) -> User:
    return make_user(db_session, "manager@example.com", "manager")


@pytest.fixture
def member(db_session) -> User:
    return make_user(db_session, "member@example.com", "user")


@pytest.fixture
def outsider(db_session) -> User:
    """Authenticated user with no roles at all."""
    return make_user(db_session, "nobody@example.com")
