from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fleetcrm.core.auth import issue_token
from fleetcrm.core.config import get_settings
from fleetcrm.core.database import Base, enable_sqlite_foreign_keys, get_db
from fleetcrm.crm.models import User
from fleetcrm.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_me_echoes_token_identity(client: TestClient) -> None:
    response = client.get("/me", headers=_bearer(issue_token(7, "BDM")))
    assert response.status_code == 200
    assert response.json() == {"user_id": 7, "role": "BDM"}


def test_missing_token_is_unauthorized(client: TestClient) -> None:
    response = client.get("/me")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


def test_token_signed_with_other_secret_is_unauthorized(client: TestClient) -> None:
    token = jwt.encode({"sub": "7", "role": "BDM"}, "wrong-secret", algorithm="HS256")
    response = client.get("/me", headers=_bearer(token))
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


def test_token_with_unknown_role_is_unauthorized(client: TestClient) -> None:
    token = jwt.encode({"sub": "7", "role": "ADMIN"}, "test-secret", algorithm="HS256")
    response = client.get("/me", headers=_bearer(token))
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token role"


def test_token_with_non_numeric_subject_is_unauthorized(client: TestClient) -> None:
    token = jwt.encode({"sub": "someone", "role": "BDM"}, "test-secret", algorithm="HS256")
    response = client.get("/me", headers=_bearer(token))
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token subject"


def test_crm_endpoints_require_token(client: TestClient) -> None:
    assert client.get("/api/crm/dashboard").status_code == 401


def test_bdm_token_drives_dashboard_scope(client: TestClient, db_session: Session) -> None:
    rep = User(email="rep@example.com", name="Rep", role="BDM")
    db_session.add(rep)
    db_session.commit()

    response = client.get("/api/crm/dashboard", headers=_bearer(issue_token(rep.id, "BDM")))
    assert response.status_code == 200
    assert response.json()["total_companies"] == 0

    created = client.post(
        "/api/crm/companies",
        json={"name": "Token Co", "assigned_bdm": rep.id},
        headers=_bearer(issue_token(rep.id, "BDM")),
    )
    assert created.status_code == 201
    assert created.json()["created_by"] == rep.id


def test_health_is_public(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
