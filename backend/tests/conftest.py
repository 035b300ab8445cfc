"""
Pytest configuration and fixtures for Game Deals backend tests.
"""

from typing import Callable, Dict, Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from gamedeals.config import Settings
from gamedeals.database import Base, User, build_session_factory
from gamedeals.main import create_app

TEST_AUTH_TOKEN_SECRET = "test-auth-token-secret-for-unit-tests"  # pragma: allowlist secret


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """In-memory SQLite shared by every session of one test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker:
    return build_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    """Settings that never read the environment"""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        auth_token_secret=TEST_AUTH_TOKEN_SECRET,
        initial_admin_username="admin",
        initial_admin_password="admin",  # pragma: allowlist secret
        seed_default_policies=True,
    )


@pytest.fixture
def app(settings: Settings, engine: Engine) -> FastAPI:
    return create_app(settings=settings, engine=engine)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Test client with the lifespan (tables, initial admin, policy seed) already run"""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(session_factory: sessionmaker) -> Callable[..., User]:
    """
    Insert a user directly.

    The default password hash is not a valid hash, so these users can be
    authorized against but never log in with a password.
    """

    def _make_user(username: str, password_hash: str = "not-a-password-hash", must_reset: bool = False) -> User:
        db = session_factory()
        try:
            user = User(username=username, password_hash=password_hash, must_reset_password=must_reset)
            db.add(user)
            db.commit()
            db.refresh(user)
            db.expunge(user)
            return user
        finally:
            db.close()

    return _make_user


@pytest.fixture
def auth_headers(app: FastAPI) -> Callable[[int], Dict[str, str]]:
    """Authorization header carrying a valid API token for a user id"""

    def _auth_headers(user_id: int) -> Dict[str, str]:
        token = app.state.authenticator.jwt_manager.create_auth_token(user_id)
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def admin_user(client: TestClient, session_factory: sessionmaker) -> User:
    """The initial admin created at startup"""
    db = session_factory()
    try:
        user = db.query(User).filter(User.username == "admin").one()
        db.expunge(user)
        return user
    finally:
        db.close()
