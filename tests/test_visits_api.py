from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fleetcrm.core.database import Base, enable_sqlite_foreign_keys, get_db
from fleetcrm.crm.api import get_current_user
from fleetcrm.crm.models import Company, Contact, User, Visit
from fleetcrm.crm.service import ActorUser
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
def seed(db_session: Session) -> dict[str, int]:
    rep = User(email="field@example.com", name="Field Rep", role="BDM")
    db_session.add(rep)
    db_session.flush()

    depot = Company(name="Depot Co", created_by=rep.id, assigned_bdm=rep.id)
    yard = Company(name="Yard Co", created_by=rep.id, assigned_bdm=rep.id)
    db_session.add_all([depot, yard])
    db_session.flush()

    depot_contact = Contact(company_id=depot.id, name="Quinn")
    yard_contact = Contact(company_id=yard.id, name="Rae")
    db_session.add_all([depot_contact, yard_contact])
    db_session.commit()
    return {
        "rep": rep.id,
        "depot": depot.id,
        "yard": yard.id,
        "depot_contact": depot_contact.id,
        "yard_contact": yard_contact.id,
    }


@pytest.fixture()
def client(db_session: Session, seed: dict[str, int]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> ActorUser:
        return ActorUser(user_id=seed["rep"], role="BDM", correlation_id="corr-visit")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _visit_payload(company_id: int, visit_date: str, **overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "company_id": company_id,
        "visit_type": "SALES_CALL",
        "visit_date": visit_date,
        "summary": "Quarterly review",
    }
    payload.update(overrides)
    return payload


def test_create_visit_records_acting_user(client: TestClient, seed: dict[str, int]) -> None:
    response = client.post(
        "/api/crm/visits",
        json=_visit_payload(seed["depot"], "2024-06-03T09:15:00", contact_id=seed["depot_contact"], duration_minutes=45),
    )
    assert response.status_code == 201
    body = response.json()
    assert body["user_id"] == seed["rep"]
    assert body["contact_id"] == seed["depot_contact"]
    assert body["visit_date"] == "2024-06-03T09:15:00"


def test_contact_from_other_company_is_rejected(client: TestClient, db_session: Session, seed: dict[str, int]) -> None:
    response = client.post(
        "/api/crm/visits",
        json=_visit_payload(seed["depot"], "2024-06-03T09:15:00", contact_id=seed["yard_contact"]),
    )
    assert response.status_code == 404
    body = response.json()
    assert body["code"] == "crm_visit_create_failed"
    assert "does not belong to the specified company" in body["message"]
    assert db_session.scalar(select(func.count(Visit.id))) == 0


def test_visit_for_missing_company_is_rejected(client: TestClient) -> None:
    response = client.post("/api/crm/visits", json=_visit_payload(8080, "2024-06-03T09:15:00"))
    assert response.status_code == 404
    assert response.json()["message"] == "Company not found"


def test_unknown_visit_type_is_rejected(client: TestClient, seed: dict[str, int]) -> None:
    response = client.post(
        "/api/crm/visits",
        json=_visit_payload(seed["depot"], "2024-06-03T09:15:00", visit_type="LUNCH"),
    )
    assert response.status_code == 422


def test_list_visits_newest_first_with_filters(client: TestClient, seed: dict[str, int]) -> None:
    for company, when, summary in [
        (seed["depot"], "2024-06-01T08:00:00", "june depot"),
        (seed["depot"], "2024-07-01T08:00:00", "july depot"),
        (seed["yard"], "2024-06-15T08:00:00", "june yard"),
    ]:
        assert client.post("/api/crm/visits", json=_visit_payload(company, when, summary=summary)).status_code == 201

    everything = client.get("/api/crm/visits").json()
    assert [row["summary"] for row in everything] == ["july depot", "june yard", "june depot"]

    depot_only = client.get("/api/crm/visits", params={"company_id": seed["depot"]}).json()
    assert [row["summary"] for row in depot_only] == ["july depot", "june depot"]

    june = client.get(
        "/api/crm/visits",
        params={"from_date": "2024-06-01T00:00:00", "to_date": "2024-06-30T23:59:59"},
    ).json()
    assert [row["summary"] for row in june] == ["june yard", "june depot"]

    mine = client.get("/api/crm/visits", params={"user_id": seed["rep"], "limit": 1}).json()
    assert [row["summary"] for row in mine] == ["july depot"]
