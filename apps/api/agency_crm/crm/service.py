from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from agency_crm import audit, events
from agency_crm.core.config import get_settings
from agency_crm.core.security import create_access_token, verify_password
from agency_crm.crm.enums import CLOSED_STAGES, OPEN_STAGES, DealStage
from agency_crm.crm.models import Company, Deal, DealStageHistory, User, utcnow
from agency_crm.crm.pipeline import (
    MONEY_QUANTUM,
    apply_stage_change,
    compute_weighted_value,
    create_deal_record,
    ensure_lost_reason,
)
from agency_crm.crm.schemas import (
    CloseLostChange,
    CloseWonChange,
    DealCreate,
    DealRead,
    DealStageHistoryRead,
    DealUpdate,
    LoginRequest,
    OpenStageChange,
    PipelineStageSummary,
    PipelineSummary,
    TokenResponse,
    UserRead,
)
from agency_crm.metrics import observe_stage_transition
from agency_crm.otel import get_tracer

logger = logging.getLogger("app.crm.deals")
tracer = get_tracer("agency_crm.crm")


@dataclass
class ActorUser:
    user_id: str
    email: str = ""
    role: str = "SALES_REP"
    correlation_id: str | None = None

    @property
    def user_uuid(self) -> uuid.UUID:
        try:
            return uuid.UUID(self.user_id)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized") from None


class AuthService:
    def login(self, session: Session, dto: LoginRequest) -> TokenResponse:
        user = session.scalar(select(User).where(func.lower(User.email) == dto.email.strip().lower()))
        if user is None or not user.is_active or not verify_password(dto.password, user.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
        token = create_access_token(str(user.id), user.email, user.role.value)
        logger.info("auth.login", extra={"actor_user_id": str(user.id)})
        return TokenResponse(access_token=token, user=UserRead.model_validate(user))

    def get_user(self, session: Session, actor_user: ActorUser) -> UserRead:
        user = session.get(User, actor_user.user_uuid)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        return UserRead.model_validate(user)


class DealService:
    entity_type = "deal"

    def _to_read(self, deal: Deal) -> DealRead:
        return DealRead.model_validate(deal)

    def _get_deal(self, session: Session, deal_id: uuid.UUID) -> Deal:
        deal = session.get(Deal, deal_id)
        if deal is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")
        return deal

    def _require_company(self, session: Session, company_id: uuid.UUID) -> None:
        if session.get(Company, company_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")

    def _require_user(self, session: Session, user_id: uuid.UUID) -> None:
        if session.get(User, user_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Owner not found")

    def _publish(self, event_type: str, actor_user: ActorUser, payload: dict[str, Any]) -> None:
        events.publish(events.build_envelope(event_type, actor_user.user_id, payload, actor_user.correlation_id))

    def create_deal(self, session: Session, actor_user: ActorUser, dto: DealCreate) -> DealRead:
        self._require_company(session, dto.company_id)
        if dto.owner_id is not None:
            self._require_user(session, dto.owner_id)
        ensure_lost_reason(dto.stage, dto.lost_reason, required=get_settings().require_lost_reason)

        deal = create_deal_record(
            session,
            name=dto.name.strip(),
            company_id=dto.company_id,
            owner_id=dto.owner_id or actor_user.user_uuid,
            created_by_id=actor_user.user_uuid,
            value=dto.value,
            probability=dto.probability,
            stage=dto.stage,
            currency=dto.currency,
            expected_close_date=dto.expected_close_date,
            source=dto.source,
            lost_reason=dto.lost_reason,
            lost_reason_note=dto.lost_reason_note,
        )
        session.flush()

        created = self._to_read(deal)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(deal.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        self._publish(
            "crm.deal.created",
            actor_user,
            {"deal_id": str(deal.id), "company_id": str(deal.company_id), "stage": deal.stage.value},
        )
        session.commit()
        logger.info("crm.deal.created", extra={"deal_id": str(deal.id), "to_stage": deal.stage.value})
        return created

    def get_deal(self, session: Session, actor_user: ActorUser, deal_id: uuid.UUID) -> DealRead:
        return self._to_read(self._get_deal(session, deal_id))

    def update_deal(self, session: Session, actor_user: ActorUser, deal_id: uuid.UUID, dto: DealUpdate) -> DealRead:
        deal = self._get_deal(session, deal_id)
        changes = dto.model_dump(exclude_unset=True)
        if not changes:
            return self._to_read(deal)

        if deal.stage in CLOSED_STAGES and "probability" in changes and changes["probability"] != deal.probability:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="probability is fixed for closed deals",
            )
        for required_field in ("name", "value", "currency", "probability", "company_id", "owner_id"):
            if required_field in changes and changes[required_field] is None:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail=f"{required_field} cannot be null",
                )
        if "company_id" in changes:
            self._require_company(session, changes["company_id"])
        if "owner_id" in changes:
            self._require_user(session, changes["owner_id"])

        before = self._to_read(deal).model_dump(mode="json")
        for field_name, field_value in changes.items():
            if field_name == "value":
                field_value = Decimal(field_value).quantize(MONEY_QUANTUM)
            elif field_name == "currency":
                field_value = field_value.upper()
            setattr(deal, field_name, field_value)

        deal.weighted_value = compute_weighted_value(deal.value, deal.probability)
        deal.updated_at = utcnow()
        session.add(deal)
        session.flush()

        updated = self._to_read(deal)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(deal.id),
            action="update",
            before=before,
            after=updated.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        self._publish("crm.deal.updated", actor_user, {"deal_id": str(deal.id), "fields": sorted(changes)})
        session.commit()
        return updated

    def change_stage(
        self,
        session: Session,
        actor_user: ActorUser,
        deal_id: uuid.UUID,
        command: OpenStageChange | CloseWonChange | CloseLostChange,
    ) -> DealRead:
        deal = self._get_deal(session, deal_id)
        target_stage = DealStage(command.stage)
        lost_reason = command.lost_reason if isinstance(command, CloseLostChange) else None
        lost_reason_note = command.lost_reason_note if isinstance(command, CloseLostChange) else None

        with tracer.start_as_current_span("crm.deal.change_stage") as span:
            span.set_attribute("deal_id", str(deal.id))
            span.set_attribute("to_stage", target_stage.value)

            before = self._to_read(deal).model_dump(mode="json")
            from_stage = deal.stage
            history = apply_stage_change(
                session,
                deal,
                target_stage,
                actor_user.user_uuid,
                lost_reason=lost_reason,
                lost_reason_note=lost_reason_note,
                require_lost_reason=get_settings().require_lost_reason,
            )
            if history is None:
                span.set_attribute("noop", True)
                return self._to_read(deal)

            deal.updated_at = history.changed_at
            session.flush()
            updated = self._to_read(deal)
            audit.record(
                actor_user_id=actor_user.user_id,
                entity_type=self.entity_type,
                entity_id=str(deal.id),
                action="change_stage",
                before=before,
                after=updated.model_dump(mode="json"),
                correlation_id=actor_user.correlation_id,
            )
            payload = {
                "deal_id": str(deal.id),
                "company_id": str(deal.company_id),
                "from_stage": from_stage.value,
                "to_stage": target_stage.value,
            }
            self._publish("crm.deal.stage_changed", actor_user, payload)
            if target_stage == DealStage.CLOSED_WON:
                self._publish("crm.deal.closed_won", actor_user, {**payload, "value": str(deal.value)})
            elif target_stage == DealStage.CLOSED_LOST:
                self._publish(
                    "crm.deal.closed_lost",
                    actor_user,
                    {**payload, "lost_reason": deal.lost_reason.value if deal.lost_reason else None},
                )
            session.commit()

        observe_stage_transition(target_stage.value)
        logger.info(
            "crm.deal.stage_changed",
            extra={"deal_id": str(deal.id), "from_stage": from_stage.value, "to_stage": target_stage.value},
        )
        return updated

    def list_history(self, session: Session, actor_user: ActorUser, deal_id: uuid.UUID) -> list[DealStageHistoryRead]:
        self._get_deal(session, deal_id)
        rows = session.scalars(
            select(DealStageHistory)
            .where(DealStageHistory.deal_id == deal_id)
            .order_by(DealStageHistory.changed_at.desc())
        ).all()
        return [DealStageHistoryRead.model_validate(row) for row in rows]

    def pipeline_summary(self, session: Session, actor_user: ActorUser) -> PipelineSummary:
        rows = session.execute(
            select(
                Deal.stage,
                func.count(Deal.id),
                func.coalesce(func.sum(Deal.value), 0),
                func.coalesce(func.sum(Deal.weighted_value), 0),
            ).group_by(Deal.stage)
        ).all()
        totals: dict[DealStage, tuple[int, Decimal, Decimal]] = {}
        for stage, count, total_value, weighted_value in rows:
            totals[stage] = (
                int(count),
                Decimal(str(total_value)).quantize(MONEY_QUANTUM),
                Decimal(str(weighted_value)).quantize(MONEY_QUANTUM),
            )

        zero = Decimal("0.00")
        stages = [
            PipelineStageSummary(
                stage=stage,
                count=totals.get(stage, (0, zero, zero))[0],
                total_value=totals.get(stage, (0, zero, zero))[1],
                weighted_value=totals.get(stage, (0, zero, zero))[2],
            )
            for stage in DealStage
        ]
        open_stages = [item for item in stages if item.stage in OPEN_STAGES]
        return PipelineSummary(
            stages=stages,
            open_deal_count=sum(item.count for item in open_stages),
            open_pipeline_value=sum((item.total_value for item in open_stages), zero),
            open_weighted_value=sum((item.weighted_value for item in open_stages), zero),
        )
