from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from agency_crm.core.config import get_settings
from agency_crm.crm.api import auth_router, deals_router, get_current_user
from agency_crm.crm.enums import UserRole
from agency_crm.crm.service import ActorUser
from agency_crm.imports.api import router as import_router
from agency_crm.metrics import generate_metrics_payload, metrics_content_type

router = APIRouter()
router.include_router(auth_router)
router.include_router(deals_router)
router.include_router(import_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: ActorUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if user.role not in {UserRole.ADMIN.value, UserRole.MANAGER.value}:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Metrics require an ADMIN or MANAGER role")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
