import functools
import os
from typing import Generator, Tuple

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "unit-test-secret")

import bcrypt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from docshare import auth
from docshare.database import Base, get_db
from docshare.main import app
from docshare.models import User
from docshare.store import ShareStore

_real_gensalt = bcrypt.gensalt


@pytest.fixture(autouse=True)
def _fast_bcrypt(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(bcrypt, "gensalt", functools.partial(_real_gensalt, rounds=4))


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(db_session: Session) -> ShareStore:
    return ShareStore(db_session)


@pytest.fixture()
def user(db_session: Session) -> User:
    return auth.register_user(db_session, "alice", "alice@example.com", "alice-password")


@pytest.fixture()
def other_user(db_session: Session) -> User:
    return auth.register_user(db_session, "bob", "bob@example.com", "bob-password")


@pytest.fixture()
def client(session_factory: sessionmaker) -> Generator[TestClient, None, None]:
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)
    try:
        yield test_client
    finally:
        test_client.close()
        app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers(client: TestClient, user: User) -> dict:
    response = client.post("/api/auth/login", json={"username": "alice", "password": "alice-password"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


@pytest.fixture()
def login_as(client: TestClient):
    """Log in through the API and return (headers, user json)."""

    def _login(username: str, password: str) -> Tuple[dict, dict]:
        response = client.post("/api/auth/login", json={"username": username, "password": password})
        assert response.status_code == 200
        body = response.json()
        return {"Authorization": f"Bearer {body['token']}"}, body["user"]

    return _login
