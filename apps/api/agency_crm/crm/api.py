from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from agency_crm.context import get_correlation_id
from agency_crm.core.auth import AuthUser, get_current_user as get_auth_user
from agency_crm.core.database import get_db
from agency_crm.crm.schemas import (
    DealCreate,
    DealRead,
    DealStageHistoryRead,
    DealUpdate,
    LoginRequest,
    PipelineSummary,
    StageChangeRequest,
    TokenResponse,
    UserRead,
)
from agency_crm.crm.service import ActorUser, AuthService, DealService

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
deals_router = APIRouter(prefix="/api/deals", tags=["crm.deals"])
auth_service = AuthService()
deal_service = DealService()


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def _request_correlation_id(request: Request) -> str | None:
    return get_correlation_id() or getattr(request.state, "correlation_id", None)


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=_request_correlation_id(request),
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    return ActorUser(
        user_id=auth_user.sub,
        email=auth_user.email,
        role=auth_user.role,
        correlation_id=_request_correlation_id(request),
    )


@auth_router.post("/login", response_model=TokenResponse)
def login(request: Request, dto: LoginRequest, db: Session = Depends(get_db)) -> TokenResponse | JSONResponse:
    try:
        return auth_service.login(db, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="auth_login_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@auth_router.get("/me", response_model=UserRead)
def me(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> UserRead | JSONResponse:
    try:
        return auth_service.get_user(db, user)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="auth_me_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@deals_router.post("", response_model=DealRead, status_code=status.HTTP_201_CREATED)
def create_deal(
    request: Request,
    dto: DealCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        return deal_service.create_deal(db, user, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_deal_create_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@deals_router.get("/pipeline", response_model=PipelineSummary)
def get_pipeline_summary(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> PipelineSummary | JSONResponse:
    try:
        return deal_service.pipeline_summary(db, user)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_deal_pipeline_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@deals_router.get("/{deal_id}", response_model=DealRead)
def get_deal(
    request: Request,
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        return deal_service.get_deal(db, user, deal_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_deal_get_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@deals_router.patch("/{deal_id}", response_model=DealRead)
def patch_deal(
    request: Request,
    deal_id: uuid.UUID,
    dto: DealUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        return deal_service.update_deal(db, user, deal_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_deal_update_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@deals_router.patch("/{deal_id}/stage", response_model=DealRead)
def change_deal_stage(
    request: Request,
    deal_id: uuid.UUID,
    dto: StageChangeRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        return deal_service.change_stage(db, user, deal_id, dto.root)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_deal_change_stage_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@deals_router.get("/{deal_id}/history", response_model=list[DealStageHistoryRead])
def list_deal_history(
    request: Request,
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[DealStageHistoryRead] | JSONResponse:
    try:
        return deal_service.list_history(db, user, deal_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_deal_history_failed",
            message=str(exc.detail),
            details=exc.detail,
        )
