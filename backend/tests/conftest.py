from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator

_TEST_DATA_DIR = tempfile.mkdtemp(prefix="teamclock-tests-")
os.environ["TT_SQLITE_PATH"] = str(Path(_TEST_DATA_DIR) / "teamclock.db")
os.environ["TZ"] = "Europe/Berlin"

import bcrypt  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402

from teamclock import models, services  # noqa: E402
from teamclock.auth import create_api_session  # noqa: E402
from teamclock.database import get_db  # noqa: E402
from teamclock.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch) -> None:
    gensalt = bcrypt.gensalt
    monkeypatch.setattr(bcrypt, "gensalt", lambda rounds=4, prefix=b"2b": gensalt(rounds, prefix))


@pytest.fixture()
def engine(tmp_path: Path):
    url = f"sqlite:///{tmp_path / 'test.db'}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    services.seed_defaults(session)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session: Session, session_factory) -> Generator[TestClient, None, None]:
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def admin(session: Session) -> models.User:
    return services.create_user(session, "Ada Admin", "ada@example.com", "secret-admin", "admin")


@pytest.fixture()
def member(session: Session) -> models.User:
    return services.create_user(session, "Max Member", "max@example.com", "secret-member", "member")


@pytest.fixture()
def auth_headers(session: Session) -> Callable[[models.User], Dict[str, str]]:
    def _headers(user: models.User) -> Dict[str, str]:
        _, token = create_api_session(session, user)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def admin_headers(admin: models.User, auth_headers) -> Dict[str, str]:
    return auth_headers(admin)


@pytest.fixture()
def member_headers(member: models.User, auth_headers) -> Dict[str, str]:
    return auth_headers(member)


@pytest.fixture()
def categories(client: TestClient, member_headers: Dict[str, str]) -> Dict[str, int]:
    response = client.get("/categories", headers=member_headers)
    assert response.status_code == 200
    return {item["name"]: item["id"] for item in response.json()}
