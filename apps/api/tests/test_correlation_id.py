from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agency_crm import audit, events
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
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def company_id(db_session: Session) -> uuid.UUID:
    user = User(email="corr@agency.com", password_hash="unused", first_name="Cor", last_name="Rel", role=UserRole.ADMIN)
    db_session.add(user)
    db_session.flush()
    company = Company(name="Correlated", type=CompanyType.LEAD, owner_id=user.id)
    db_session.add(company)
    db_session.commit()
    return company.id


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id=str(uuid.uuid4()),
            role="ADMIN",
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/api/deals/{uuid.uuid4()}")

    assert response.status_code == 404
    correlation_id = response.headers["x-correlation-id"]
    assert uuid.UUID(correlation_id)
    assert response.json()["correlation_id"] == correlation_id


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "client-abc.1"})

    assert response.status_code == 200
    assert response.headers["x-correlation-id"] == "client-abc.1"


def test_malformed_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Correlation-Id": "bad id with spaces"})

    assert response.headers["x-correlation-id"] != "bad id with spaces"
    assert uuid.UUID(response.headers["x-correlation-id"])


def test_audit_and_events_use_request_correlation_id(client: TestClient, company_id: uuid.UUID) -> None:
    response = client.post(
        "/api/deals",
        json={"name": "Traced", "company_id": str(company_id), "value": "100"},
        headers={"X-Correlation-Id": "corr-deal-1"},
    )

    assert response.status_code == 201
    deal_id = response.json()["id"]
    assert audit.entries_for("deal", deal_id)[0]["correlation_id"] == "corr-deal-1"
    created = [event for event in events.published_events if event["event_type"] == "crm.deal.created"]
    assert created[0]["correlation_id"] == "corr-deal-1"
