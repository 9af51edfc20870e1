from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from agency_crm.core.database import get_db
from agency_crm.crm.api import error_response, get_current_user
from agency_crm.crm.service import ActorUser
from agency_crm.imports.backup import BackupError, BackupNotFoundError, BackupService, InvalidBackupIdError
from agency_crm.imports.hubspot import HubSpotImportService
from agency_crm.imports.maintenance import MaintenanceInProgressError, maintenance_lock
from agency_crm.imports.schemas import BackupRead, ImportResponse, RestoreResponse

router = APIRouter(prefix="/api/import", tags=["crm.import"])
backup_service = BackupService()
hubspot_import_service = HubSpotImportService(backup_service)


def _read_upload(upload: UploadFile | None) -> str | None:
    if upload is None:
        return None
    content = upload.file.read()
    if not content:
        return None
    return content.decode("utf-8-sig")


@router.post("/hubspot", response_model=ImportResponse)
def import_hubspot(
    request: Request,
    companies: UploadFile | None = File(default=None),
    contacts: UploadFile | None = File(default=None),
    deals: UploadFile | None = File(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ImportResponse | JSONResponse:
    try:
        files = {
            "companies": _read_upload(companies),
            "contacts": _read_upload(contacts),
            "deals": _read_upload(deals),
        }
        return hubspot_import_service.run(db, user, files)
    except UnicodeDecodeError as exc:
        return error_response(
            request,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="crm_import_invalid_file",
            message="CSV files must be UTF-8 encoded",
            details=str(exc),
        )
    except MaintenanceInProgressError as exc:
        return error_response(
            request,
            status_code=status.HTTP_409_CONFLICT,
            code="crm_maintenance_in_progress",
            message=str(exc),
            details={"active_operation": exc.active_operation},
        )
    except BackupError as exc:
        return error_response(
            request,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="crm_import_backup_failed",
            message="Backup failed; import aborted before any data was changed",
            details=str(exc),
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="crm_import_failed",
            message=str(exc.detail),
            details=exc.detail,
        )


@router.get("/backups", response_model=list[BackupRead])
def list_backups(
    request: Request,
    user: ActorUser = Depends(get_current_user),
) -> list[BackupRead] | JSONResponse:
    try:
        return [BackupRead(**artifact.to_dict()) for artifact in backup_service.list_backups()]
    except OSError as exc:
        return error_response(
            request,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="crm_backup_list_failed",
            message="Could not read backup directory",
            details=str(exc),
        )


@router.post("/backups", response_model=BackupRead, status_code=status.HTTP_201_CREATED)
def create_backup(
    request: Request,
    user: ActorUser = Depends(get_current_user),
) -> BackupRead | JSONResponse:
    try:
        with maintenance_lock.hold("backup"):
            artifact = backup_service.create_backup()
        return BackupRead(**artifact.to_dict())
    except MaintenanceInProgressError as exc:
        return error_response(
            request,
            status_code=status.HTTP_409_CONFLICT,
            code="crm_maintenance_in_progress",
            message=str(exc),
            details={"active_operation": exc.active_operation},
        )
    except BackupError as exc:
        return error_response(
            request,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="crm_backup_create_failed",
            message=str(exc),
            details=str(exc),
        )


@router.post("/restore/{backup_id}", response_model=RestoreResponse)
def restore_backup(
    request: Request,
    backup_id: str,
    user: ActorUser = Depends(get_current_user),
) -> RestoreResponse | JSONResponse:
    try:
        with maintenance_lock.hold("restore"):
            artifact = backup_service.restore(backup_id, actor_user_id=user.user_id)
        return RestoreResponse(
            success=True,
            backup=BackupRead(**artifact.to_dict()),
            message="Database restored successfully",
        )
    except InvalidBackupIdError as exc:
        return error_response(
            request,
            status_code=status.HTTP_400_BAD_REQUEST,
            code="crm_restore_invalid_backup_id",
            message=str(exc),
            details=str(exc),
        )
    except BackupNotFoundError as exc:
        return error_response(
            request,
            status_code=status.HTTP_404_NOT_FOUND,
            code="crm_restore_not_found",
            message=str(exc),
            details=str(exc),
        )
    except MaintenanceInProgressError as exc:
        return error_response(
            request,
            status_code=status.HTTP_409_CONFLICT,
            code="crm_maintenance_in_progress",
            message=str(exc),
            details={"active_operation": exc.active_operation},
        )
    except BackupError as exc:
        return error_response(
            request,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            code="crm_restore_failed",
            message=str(exc),
            details=str(exc),
        )
