from __future__ import annotations

import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from agency_crm.crm.enums import ClosedStatus, DealStage, LeadSource, LostReason
from agency_crm.crm.models import Deal, DealStageHistory, utcnow

MONEY_QUANTUM = Decimal("0.01")


def compute_weighted_value(value: Decimal | int | float | str, probability: int) -> Decimal:
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    weighted = amount * Decimal(probability) / Decimal(100)
    return weighted.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def _mark_won(deal: Deal, now: datetime) -> None:
    deal.closed_status = ClosedStatus.WON
    deal.actual_close_date = now
    deal.probability = 100
    deal.weighted_value = compute_weighted_value(deal.value, 100)
    deal.lost_reason = None
    deal.lost_reason_note = None


def _mark_lost(deal: Deal, now: datetime, lost_reason: LostReason | None, lost_reason_note: str | None) -> None:
    deal.closed_status = ClosedStatus.LOST
    deal.actual_close_date = now
    deal.probability = 0
    deal.weighted_value = Decimal("0.00")
    deal.lost_reason = lost_reason
    deal.lost_reason_note = lost_reason_note


def _mark_open(deal: Deal) -> None:
    deal.closed_status = None
    deal.actual_close_date = None
    deal.lost_reason = None
    deal.lost_reason_note = None
    deal.weighted_value = compute_weighted_value(deal.value, deal.probability)


def ensure_lost_reason(stage: DealStage, lost_reason: LostReason | None, *, required: bool) -> None:
    if required and stage == DealStage.CLOSED_LOST and lost_reason is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="lost_reason is required when closing a deal as lost",
        )


def apply_stage_change(
    session: Session,
    deal: Deal,
    target_stage: DealStage,
    changed_by_id: uuid.UUID,
    *,
    lost_reason: LostReason | None = None,
    lost_reason_note: str | None = None,
    require_lost_reason: bool = False,
) -> DealStageHistory | None:
    if deal.stage == target_stage:
        return None

    ensure_lost_reason(target_stage, lost_reason, required=require_lost_reason)

    now = utcnow()
    previous_stage = deal.stage
    deal.stage = target_stage
    deal.stage_changed_at = now
    if target_stage == DealStage.CLOSED_WON:
        _mark_won(deal, now)
    elif target_stage == DealStage.CLOSED_LOST:
        _mark_lost(deal, now, lost_reason, lost_reason_note)
    else:
        _mark_open(deal)
    session.add(deal)

    history = DealStageHistory(
        deal_id=deal.id,
        from_stage=previous_stage,
        to_stage=target_stage,
        changed_at=now,
        changed_by_id=changed_by_id,
    )
    session.add(history)
    return history


def create_deal_record(
    session: Session,
    *,
    name: str,
    company_id: uuid.UUID,
    owner_id: uuid.UUID,
    created_by_id: uuid.UUID,
    value: Decimal,
    probability: int = 50,
    stage: DealStage = DealStage.INQUIRY,
    currency: str = "USD",
    expected_close_date: datetime | None = None,
    source: LeadSource | None = None,
    lost_reason: LostReason | None = None,
    lost_reason_note: str | None = None,
) -> Deal:
    now = utcnow()
    deal = Deal(
        id=uuid.uuid4(),
        name=name,
        company_id=company_id,
        owner_id=owner_id,
        value=value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP),
        currency=currency.upper(),
        probability=probability,
        stage=stage,
        expected_close_date=expected_close_date,
        source=source,
        created_at=now,
        updated_at=now,
        stage_changed_at=now,
    )
    if stage == DealStage.CLOSED_WON:
        _mark_won(deal, now)
    elif stage == DealStage.CLOSED_LOST:
        _mark_lost(deal, now, lost_reason, lost_reason_note)
    else:
        _mark_open(deal)
    session.add(deal)
    session.add(
        DealStageHistory(
            deal_id=deal.id,
            from_stage=None,
            to_stage=stage,
            changed_at=now,
            changed_by_id=created_by_id,
        )
    )
    return deal


def replay_history(history: list[DealStageHistory]) -> DealStage | None:
    current: DealStage | None = None
    for entry in sorted(history, key=lambda item: item.changed_at):
        if entry.from_stage != current:
            raise ValueError(f"stage history gap: expected from {current}, found {entry.from_stage}")
        current = entry.to_stage
    return current
