from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fleetcrm.core.auth import issue_token
from fleetcrm.core.database import Base, enable_sqlite_foreign_keys, get_db
from fleetcrm.crm.api import get_current_user as crm_get_current_user
from fleetcrm.crm.models import Company, User
from fleetcrm.crm.service import ActorUser
from fleetcrm.logging import JsonLogFormatter
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


@pytest.fixture()
def company_id(db_session: Session) -> int:
    rep = User(email="log@example.com", name="Log Rep", role="BDM")
    db_session.add(rep)
    db_session.flush()
    company = Company(name="Log Co", created_by=rep.id, assigned_bdm=rep.id)
    db_session.add(company)
    db_session.commit()
    return company.id


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> ActorUser:
        return ActorUser(user_id=1, role="MANAGEMENT")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[crm_get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get("/api/crm/companies/5150", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [
        record
        for record in caplog.records
        if record.name == "fleetcrm.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/crm/companies/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_primary_demotion_is_logged(
    client: TestClient,
    company_id: int,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    client.post("/api/crm/contacts", json={"company_id": company_id, "name": "A", "is_primary": True})
    client.post(
        "/api/crm/contacts",
        json={"company_id": company_id, "name": "B", "is_primary": True},
        headers={"X-Correlation-Id": "corr-demote"},
    )

    records = [record for record in caplog.records if record.getMessage() == "contact.primary_demoted"]
    assert len(records) == 1
    assert records[0].name == "fleetcrm.crm"
    assert getattr(records[0], "company_id", None) == company_id
    assert getattr(records[0], "demoted_count", None) == 1
    assert getattr(records[0], "correlation_id", None) == "corr-demote"


def test_opportunity_close_is_logged(
    client: TestClient,
    company_id: int,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    created = client.post(
        "/api/crm/opportunities",
        json={"company_id": company_id, "title": "Log deal", "stage": "NEGOTIATION"},
    ).json()
    client.patch(f"/api/crm/opportunities/{created['id']}", json={"stage": "CLOSED_LOST"})

    records = [record for record in caplog.records if record.getMessage() == "opportunity.closed"]
    assert records
    assert getattr(records[-1], "stage", None) == "CLOSED_LOST"
    assert getattr(records[-1], "opportunity_id", None) == created["id"]


def test_json_formatter_keeps_known_fields_only() -> None:
    record = logging.makeLogRecord(
        {
            "name": "fleetcrm.crm",
            "levelno": logging.INFO,
            "levelname": "INFO",
            "msg": "dashboard.computed",
            "correlation_id": "corr-json",
            "role": "BDM",
            "total_companies": 3,
            "secret": "do-not-log",
        }
    )

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "dashboard.computed"
    assert payload["logger"] == "fleetcrm.crm"
    assert payload["correlation_id"] == "corr-json"
    assert payload["fields"] == {"role": "BDM", "total_companies": 3}


def test_request_log_names_authenticated_user(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    app.dependency_overrides.pop(crm_get_current_user)
    caplog.set_level(logging.INFO)

    response = client.get("/api/crm/companies", headers={"Authorization": f"Bearer {issue_token(42, 'BDM')}"})
    assert response.status_code == 200

    records = [
        record
        for record in caplog.records
        if record.name == "fleetcrm.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert getattr(records[-1], "user_id", None) == 42
    assert getattr(records[-1], "role", None) == "BDM"


def test_unauthenticated_request_log_has_no_user(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    app.dependency_overrides.pop(crm_get_current_user)
    caplog.set_level(logging.INFO)

    response = client.get("/api/crm/companies")
    assert response.status_code == 401

    records = [record for record in caplog.records if record.getMessage() == "http.request"]
    assert records
    assert not hasattr(records[-1], "user_id")
