from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

ImportEntity = Literal["companies", "contacts", "deals"]


class ImportRecordIssue(BaseModel):
    entity: ImportEntity
    row_number: int
    record: str
    outcome: Literal["skipped", "failed"]
    error_code: str
    message: str


class ImportEntityResult(BaseModel):
    entity: ImportEntity
    imported: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    errors: list[ImportRecordIssue] = Field(default_factory=list)


class BackupRead(BaseModel):
    id: str
    filename: str
    size: int
    created_at: datetime


class ImportResponse(BaseModel):
    success: bool
    imported: int
    details: dict[str, ImportEntityResult]
    errors: list[ImportRecordIssue]
    backup: BackupRead | None
    message: str


class RestoreResponse(BaseModel):
    success: bool
    backup: BackupRead
    message: str
