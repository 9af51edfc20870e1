from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from agency_crm.core.database import Base
from agency_crm.crm.enums import ClosedStatus, CompanyType, DealStage, LostReason, UserRole
from agency_crm.crm.models import Company, Deal, DealStageHistory, User
from agency_crm.crm.pipeline import (
    apply_stage_change,
    compute_weighted_value,
    create_deal_record,
    replay_history,
)


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
def ticking_clock(monkeypatch: pytest.MonkeyPatch) -> None:
    current = {"value": datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)}

    def fake_utcnow() -> datetime:
        current["value"] = current["value"] + timedelta(seconds=1)
        return current["value"]

    monkeypatch.setattr("agency_crm.crm.pipeline.utcnow", fake_utcnow)


@pytest.fixture()
def seed(db_session: Session) -> dict[str, uuid.UUID]:
    user = User(
        email="rep@agency.com",
        password_hash="not-a-real-hash",
        first_name="Riley",
        last_name="Rep",
        role=UserRole.SALES_REP,
    )
    db_session.add(user)
    db_session.flush()
    company = Company(name="Acme", type=CompanyType.PROSPECT, owner_id=user.id)
    db_session.add(company)
    db_session.commit()
    return {"user": user.id, "company": company.id}


def _new_deal(session: Session, seed: dict[str, uuid.UUID], **overrides) -> Deal:  # type: ignore[no-untyped-def]
    values = {
        "name": "Brand refresh",
        "company_id": seed["company"],
        "owner_id": seed["user"],
        "created_by_id": seed["user"],
        "value": Decimal("1000"),
        "probability": 60,
    }
    values.update(overrides)
    deal = create_deal_record(session, **values)
    session.commit()
    return deal


def _history(session: Session, deal_id: uuid.UUID) -> list[DealStageHistory]:
    return list(
        session.scalars(
            select(DealStageHistory).where(DealStageHistory.deal_id == deal_id).order_by(DealStageHistory.changed_at)
        )
    )


def test_compute_weighted_value_rounds_half_up_to_cents() -> None:
    assert compute_weighted_value(Decimal("1000"), 60) == Decimal("600.00")
    assert compute_weighted_value(Decimal("999.99"), 33) == Decimal("330.00")
    assert compute_weighted_value(Decimal("0.05"), 50) == Decimal("0.03")
    assert compute_weighted_value(Decimal("1234.56"), 0) == Decimal("0.00")
    assert compute_weighted_value(Decimal("1234.56"), 100) == Decimal("1234.56")


def test_create_deal_record_writes_creation_history_row(db_session: Session, seed: dict[str, uuid.UUID]) -> None:
    deal = _new_deal(db_session, seed)

    assert deal.stage == DealStage.INQUIRY
    assert deal.weighted_value == Decimal("600.00")
    assert deal.closed_status is None

    history = _history(db_session, deal.id)
    assert len(history) == 1
    assert history[0].from_stage is None
    assert history[0].to_stage == DealStage.INQUIRY
    assert history[0].changed_by_id == seed["user"]


def test_create_deal_record_in_closed_stage_applies_closing_semantics(
    db_session: Session, seed: dict[str, uuid.UUID]
) -> None:
    won = _new_deal(db_session, seed, stage=DealStage.CLOSED_WON)
    lost = _new_deal(db_session, seed, stage=DealStage.CLOSED_LOST, lost_reason=LostReason.TIMING)

    assert won.closed_status == ClosedStatus.WON
    assert won.probability == 100
    assert won.weighted_value == won.value
    assert won.actual_close_date is not None

    assert lost.closed_status == ClosedStatus.LOST
    assert lost.probability == 0
    assert lost.weighted_value == Decimal("0")
    assert lost.lost_reason == LostReason.TIMING


def test_same_stage_transition_is_a_noop(db_session: Session, seed: dict[str, uuid.UUID]) -> None:
    deal = _new_deal(db_session, seed, stage=DealStage.PROPOSAL_SENT)
    stage_changed_at = deal.stage_changed_at

    history = apply_stage_change(db_session, deal, DealStage.PROPOSAL_SENT, seed["user"])
    db_session.commit()

    assert history is None
    assert deal.stage_changed_at == stage_changed_at
    assert len(_history(db_session, deal.id)) == 1


def test_reopening_a_won_deal_clears_closed_fields(db_session: Session, seed: dict[str, uuid.UUID]) -> None:
    deal = _new_deal(db_session, seed)
    apply_stage_change(db_session, deal, DealStage.CLOSED_WON, seed["user"])
    db_session.commit()

    apply_stage_change(db_session, deal, DealStage.NEGOTIATION, seed["user"])
    db_session.commit()

    assert deal.stage == DealStage.NEGOTIATION
    assert deal.closed_status is None
    assert deal.actual_close_date is None
    assert deal.lost_reason is None
    assert deal.weighted_value == compute_weighted_value(deal.value, deal.probability)


def test_lost_reason_policy_rejects_without_writing(db_session: Session, seed: dict[str, uuid.UUID]) -> None:
    deal = _new_deal(db_session, seed, stage=DealStage.NEGOTIATION)

    with pytest.raises(HTTPException) as exc_info:
        apply_stage_change(db_session, deal, DealStage.CLOSED_LOST, seed["user"], require_lost_reason=True)
    db_session.commit()

    assert exc_info.value.status_code == 422
    assert deal.stage == DealStage.NEGOTIATION
    assert deal.closed_status is None
    assert len(_history(db_session, deal.id)) == 1


def test_history_replays_to_current_stage(db_session: Session, seed: dict[str, uuid.UUID]) -> None:
    deal = _new_deal(db_session, seed)
    path = [
        DealStage.DISCOVERY_CALL_SCHEDULED,
        DealStage.PROPOSAL_SENT,
        DealStage.CLOSED_LOST,
        DealStage.NEGOTIATION,
        DealStage.CLOSED_WON,
    ]
    for stage in path:
        apply_stage_change(db_session, deal, stage, seed["user"], lost_reason=LostReason.PRICE)
        db_session.commit()

    history = _history(db_session, deal.id)
    assert len(history) == len(path) + 1
    assert replay_history(history) == deal.stage == DealStage.CLOSED_WON


def test_replay_history_detects_gaps() -> None:
    deal_id = uuid.uuid4()
    user_id = uuid.uuid4()
    started = datetime(2026, 1, 1, tzinfo=timezone.utc)
    history = [
        DealStageHistory(
            deal_id=deal_id, from_stage=None, to_stage=DealStage.INQUIRY, changed_at=started, changed_by_id=user_id
        ),
        DealStageHistory(
            deal_id=deal_id,
            from_stage=DealStage.PROPOSAL_SENT,
            to_stage=DealStage.CONTRACT,
            changed_at=started + timedelta(minutes=5),
            changed_by_id=user_id,
        ),
    ]

    with pytest.raises(ValueError):
        replay_history(history)
