from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agency_crm.core.config import get_settings
from agency_crm.core.database import Base, get_db
from agency_crm.crm.api import get_current_user
from agency_crm.crm.enums import CompanyType, UserRole
from agency_crm.crm.models import Company, User
from agency_crm.crm.service import ActorUser
from agency_crm.main import app


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def seed(db_session: Session) -> dict[str, uuid.UUID]:
    user = User(email="ops@agency.com", password_hash="unused", first_name="Op", last_name="S", role=UserRole.ADMIN)
    db_session.add(user)
    db_session.flush()
    company = Company(name="Metrics Co", type=CompanyType.CUSTOMER, owner_id=user.id)
    db_session.add(company)
    db_session.commit()
    return {"user": user.id, "company": company.id}


def _client_for(db_session: Session, user_id: uuid.UUID, role: str) -> TestClient:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id=str(user_id),
            role=role,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    return TestClient(app)


@pytest.fixture()
def admin_client(db_session: Session, seed: dict[str, uuid.UUID]) -> Generator[TestClient, None, None]:
    with _client_for(db_session, seed["user"], "ADMIN") as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_stage_metrics(admin_client: TestClient, seed: dict[str, uuid.UUID]) -> None:
    created = admin_client.post(
        "/api/deals",
        json={"name": "Metered", "company_id": str(seed["company"]), "value": "2000"},
    )
    assert created.status_code == 201
    moved = admin_client.patch(f"/api/deals/{created.json()['id']}/stage", json={"stage": "CLOSED_WON"})
    assert moved.status_code == 200

    response = admin_client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    body = response.text
    assert "http_requests_total" in body
    assert 'path="/api/deals/{id}/stage"' in body
    assert "crm_deal_stage_transitions_total" in body
    assert 'to_stage="CLOSED_WON"' in body


def test_metrics_forbidden_for_sales_rep(db_session: Session, seed: dict[str, uuid.UUID]) -> None:
    with _client_for(db_session, seed["user"], "SALES_REP") as test_client:
        response = test_client.get("/metrics")
    app.dependency_overrides.clear()

    assert response.status_code == 403


def test_metrics_hidden_when_disabled(
    admin_client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = admin_client.get("/metrics")

    assert response.status_code == 404
