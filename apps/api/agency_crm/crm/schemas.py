from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_serializer

from agency_crm.crm.enums import (
    ClosedStatus,
    DealStage,
    LeadSource,
    LostReason,
    UserRole,
)


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1)


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    role: UserRole


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead


class DealCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    company_id: uuid.UUID
    value: Decimal = Field(default=Decimal("0"), ge=0, max_digits=14, decimal_places=2)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    probability: int = Field(default=50, ge=0, le=100)
    stage: DealStage = DealStage.INQUIRY
    expected_close_date: datetime | None = None
    source: LeadSource | None = None
    owner_id: uuid.UUID | None = None
    lost_reason: LostReason | None = None
    lost_reason_note: str | None = None


class DealUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    value: Decimal | None = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    probability: int | None = Field(default=None, ge=0, le=100)
    expected_close_date: datetime | None = None
    source: LeadSource | None = None
    owner_id: uuid.UUID | None = None
    company_id: uuid.UUID | None = None


class OpenStageChange(BaseModel):
    stage: Literal[
        "INQUIRY",
        "DISCOVERY_CALL_SCHEDULED",
        "PROPOSAL_NEEDED",
        "PROPOSAL_SENT",
        "PROPOSAL_REVIEWED",
        "DECISION_MAKER",
        "NEGOTIATION",
        "CONTRACT",
    ]


class CloseWonChange(BaseModel):
    stage: Literal["CLOSED_WON"]


class CloseLostChange(BaseModel):
    stage: Literal["CLOSED_LOST"]
    lost_reason: LostReason | None = None
    lost_reason_note: str | None = Field(default=None, max_length=2000)


StageChange = Annotated[OpenStageChange | CloseWonChange | CloseLostChange, Field(discriminator="stage")]


class StageChangeRequest(RootModel[StageChange]):
    pass


class DealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    value: Decimal
    currency: str
    probability: int
    weighted_value: Decimal
    stage: DealStage
    expected_close_date: datetime | None
    actual_close_date: datetime | None
    closed_status: ClosedStatus | None
    lost_reason: LostReason | None
    lost_reason_note: str | None
    source: LeadSource | None
    owner_id: uuid.UUID
    company_id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    stage_changed_at: datetime

    @field_serializer("value", "weighted_value")
    def _serialize_money(self, amount: Decimal) -> float:
        return float(amount)


class DealStageHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    deal_id: uuid.UUID
    from_stage: DealStage | None
    to_stage: DealStage
    changed_at: datetime
    changed_by_id: uuid.UUID


class PipelineStageSummary(BaseModel):
    stage: DealStage
    count: int
    total_value: Decimal
    weighted_value: Decimal

    @field_serializer("total_value", "weighted_value")
    def _serialize_money(self, amount: Decimal) -> float:
        return float(amount)


class PipelineSummary(BaseModel):
    stages: list[PipelineStageSummary]
    open_deal_count: int
    open_pipeline_value: Decimal
    open_weighted_value: Decimal

    @field_serializer("open_pipeline_value", "open_weighted_value")
    def _serialize_money(self, amount: Decimal) -> float:
        return float(amount)
