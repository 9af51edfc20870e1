from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Mapping
from datetime import timedelta
from decimal import Decimal

from fastapi import HTTPException, status
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agency_crm import audit, events
from agency_crm.crm.enums import CompanyType, ContactStatus, LeadSource
from agency_crm.crm.models import (
    Activity,
    Company,
    CompanyTag,
    Contact,
    ContactTag,
    Deal,
    DealContact,
    DealStageHistory,
    DealTag,
    Note,
    Tag,
    Team,
    TeamMember,
    User,
    utcnow,
)
from agency_crm.crm.pipeline import create_deal_record
from agency_crm.crm.seed import ensure_default_owner
from agency_crm.crm.service import ActorUser
from agency_crm.imports.backup import BackupArtifact, BackupService
from agency_crm.imports.csv_parser import parse_csv_lines
from agency_crm.imports.field_mapping import (
    map_company_size,
    map_deal_stage,
    map_lifecycle_stage,
    parse_amount,
    parse_hubspot_datetime,
)
from agency_crm.imports.maintenance import MaintenanceLock, maintenance_lock
from agency_crm.imports.schemas import BackupRead, ImportEntity, ImportEntityResult, ImportRecordIssue, ImportResponse
from agency_crm.metrics import observe_import_records, observe_import_run
from agency_crm.otel import get_tracer

logger = logging.getLogger("app.crm.import")
tracer = get_tracer("agency_crm.imports")

ENTITY_ORDER: tuple[ImportEntity, ...] = ("companies", "contacts", "deals")
UNKNOWN_COMPANY_NAME = "Unknown Company"
DEFAULT_DEAL_AMOUNT = Decimal("1000")
DEFAULT_CLOSE_WINDOW = timedelta(days=30)
IMPORTED_DEAL_PROBABILITY = 50

# Children before parents; users are never cleared.
CLEAR_ORDER = (
    DealStageHistory,
    DealContact,
    CompanyTag,
    ContactTag,
    DealTag,
    Activity,
    Note,
    Deal,
    Contact,
    Company,
    Tag,
    TeamMember,
    Team,
)

OwnerProvisioner = Callable[[Session], User]


class SkipRecord(Exception):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


def _blank_to_none(value: str | None) -> str | None:
    cleaned = (value or "").strip()
    return cleaned or None


def _split_external_ids(value: str | None) -> list[str]:
    return [item.strip() for item in (value or "").split(";") if item.strip()]


class HubSpotImportService:
    def __init__(
        self,
        backup_service: BackupService,
        owner_provisioner: OwnerProvisioner = ensure_default_owner,
        lock: MaintenanceLock = maintenance_lock,
    ) -> None:
        self._backup_service = backup_service
        self._owner_provisioner = owner_provisioner
        self._lock = lock

    def run(self, session: Session, actor_user: ActorUser, files: Mapping[str, str | None]) -> ImportResponse:
        provided = {entity: files[entity] for entity in ENTITY_ORDER if files.get(entity)}
        if not provided:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No CSV files provided")

        with self._lock.hold("import"):
            started = time.perf_counter()
            with tracer.start_as_current_span("crm.import.hubspot") as span:
                span.set_attribute("entities", ",".join(provided))
                owner = self._owner_provisioner(session)
                session.commit()

                artifact = self._backup_service.create_backup()
                span.set_attribute("backup_id", artifact.id)

                try:
                    results = self._import_all(session, actor_user, owner, provided)
                    session.commit()
                except Exception as exc:
                    session.rollback()
                    observe_import_run("failed", time.perf_counter() - started)
                    logger.exception(
                        "crm.import.failed",
                        extra={"backup_id": artifact.id, "error": str(exc)},
                    )
                    raise

        response = self._build_response(results, artifact)
        observe_import_run("succeeded", time.perf_counter() - started)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type="hubspot_import",
            entity_id=artifact.id,
            action="import",
            before=None,
            after={entity: result.model_dump(exclude={"errors"}) for entity, result in results.items()},
            correlation_id=actor_user.correlation_id,
        )
        envelope = events.build_envelope(
            "crm.import.completed",
            actor_user.user_id,
            {"backup_id": artifact.id, "imported": response.imported, "issues": len(response.errors)},
            actor_user.correlation_id,
        )
        events.publish(envelope)
        logger.info(
            "crm.import.completed",
            extra={"imported": response.imported, "backup_id": artifact.id, "total": sum(r.total for r in results.values())},
        )
        return response

    def _import_all(
        self,
        session: Session,
        actor_user: ActorUser,
        owner: User,
        provided: Mapping[str, str],
    ) -> dict[str, ImportEntityResult]:
        self.clear_business_data(session)

        company_ids: dict[str, uuid.UUID] = {}
        results = {entity: ImportEntityResult(entity=entity) for entity in ENTITY_ORDER}
        if "companies" in provided:
            results["companies"] = self._import_companies(session, parse_csv_lines(provided["companies"]), owner, company_ids)
        if "contacts" in provided:
            results["contacts"] = self._import_contacts(session, parse_csv_lines(provided["contacts"]), owner, company_ids)
        if "deals" in provided:
            results["deals"] = self._import_deals(
                session, parse_csv_lines(provided["deals"]), owner, actor_user, company_ids
            )

        for entity, result in results.items():
            observe_import_records(entity, result.imported, result.skipped, result.failed)
            logger.info(
                "crm.import.entity_completed",
                extra={
                    "entity": entity,
                    "imported": result.imported,
                    "skipped": result.skipped,
                    "failed": result.failed,
                    "total": result.total,
                },
            )
        return results

    def clear_business_data(self, session: Session) -> None:
        for model in CLEAR_ORDER:
            session.execute(delete(model))
        session.flush()

    def _run_record(
        self,
        session: Session,
        result: ImportEntityResult,
        row_number: int,
        label: str,
        handler: Callable[[], None],
    ) -> None:
        try:
            with session.begin_nested():
                handler()
        except SkipRecord as exc:
            result.skipped += 1
            result.errors.append(self._issue(result, row_number, label, "skipped", "REQUIRED", exc.reason))
        except HTTPException as exc:
            result.failed += 1
            result.errors.append(self._issue(result, row_number, label, "failed", "HTTP_ERROR", str(exc.detail)))
        except SQLAlchemyError as exc:
            result.failed += 1
            message = str(getattr(exc, "orig", None) or exc)
            result.errors.append(self._issue(result, row_number, label, "failed", "DB_ERROR", message[:500]))
        except Exception as exc:
            result.failed += 1
            result.errors.append(self._issue(result, row_number, label, "failed", "ROW_ERROR", str(exc)[:500]))
        else:
            result.imported += 1

    def _issue(
        self,
        result: ImportEntityResult,
        row_number: int,
        label: str,
        outcome: str,
        error_code: str,
        message: str,
    ) -> ImportRecordIssue:
        return ImportRecordIssue(
            entity=result.entity,
            row_number=row_number,
            record=label,
            outcome=outcome,
            error_code=error_code,
            message=message,
        )

    def _import_companies(
        self,
        session: Session,
        rows: list[tuple[int, dict[str, str]]],
        owner: User,
        company_ids: dict[str, uuid.UUID],
    ) -> ImportEntityResult:
        result = ImportEntityResult(entity="companies", total=len(rows))

        for row_number, row in rows:
            name = row.get("Company name", "").strip()

            def handler(row: dict[str, str] = row, name: str = name) -> None:
                if not name:
                    raise SkipRecord("Company name is required")
                revenue_raw = row.get("Annual Revenue", "")
                company = Company(
                    id=uuid.uuid4(),
                    name=name,
                    domain=_blank_to_none(row.get("Company Domain Name")),
                    website=_blank_to_none(row.get("Website URL")),
                    phone=_blank_to_none(row.get("Phone Number")),
                    city=_blank_to_none(row.get("City")),
                    state=_blank_to_none(row.get("State/Region")),
                    postal_code=_blank_to_none(row.get("Postal Code")),
                    country=_blank_to_none(row.get("Country/Region")),
                    industry=_blank_to_none(row.get("Industry")),
                    size=map_company_size(row.get("Number of Employees")),
                    annual_revenue=parse_amount(revenue_raw) if revenue_raw.strip() else None,
                    type=map_lifecycle_stage(row.get("Lifecycle Stage")),
                    source=LeadSource.OTHER,
                    external_id=_blank_to_none(row.get("Record ID")),
                    owner_id=owner.id,
                    created_at=parse_hubspot_datetime(row.get("Create Date")) or utcnow(),
                )
                session.add(company)
                session.flush()
                if company.external_id:
                    company_ids[company.external_id] = company.id

            self._run_record(session, result, row_number, name or f"row {row_number}", handler)
        return result

    def _find_company_by_name(self, session: Session, name: str | None) -> uuid.UUID | None:
        if not name:
            return None
        return session.scalar(
            select(Company.id)
            .where(func.lower(Company.name) == name.strip().lower())
            .order_by(Company.created_at, Company.id)
            .limit(1)
        )

    def _import_contacts(
        self,
        session: Session,
        rows: list[tuple[int, dict[str, str]]],
        owner: User,
        company_ids: dict[str, uuid.UUID],
    ) -> ImportEntityResult:
        result = ImportEntityResult(entity="contacts", total=len(rows))

        for row_number, row in rows:
            first_name = row.get("First Name", "").strip()
            last_name = row.get("Last Name", "").strip()
            label = f"{first_name} {last_name}".strip() or row.get("Email", "").strip() or f"row {row_number}"

            def handler(row: dict[str, str] = row, first_name: str = first_name, last_name: str = last_name) -> None:
                if not first_name and not last_name:
                    raise SkipRecord("First Name or Last Name is required")
                company_id = next(
                    (company_ids[ext] for ext in _split_external_ids(row.get("Associated Company IDs")) if ext in company_ids),
                    None,
                )
                if company_id is None:
                    company_id = self._find_company_by_name(session, row.get("Company Name"))
                session.add(
                    Contact(
                        id=uuid.uuid4(),
                        first_name=first_name,
                        last_name=last_name,
                        email=_blank_to_none(row.get("Email")),
                        phone=_blank_to_none(row.get("Phone Number")),
                        mobile_phone=_blank_to_none(row.get("Mobile Phone Number")),
                        job_title=_blank_to_none(row.get("Job Title")),
                        linkedin_url=_blank_to_none(row.get("LinkedIn URL")),
                        company_id=company_id,
                        status=ContactStatus.ACTIVE,
                        source=LeadSource.OTHER,
                        owner_id=owner.id,
                        created_at=parse_hubspot_datetime(row.get("Create Date")) or utcnow(),
                    )
                )
                session.flush()

            self._run_record(session, result, row_number, label, handler)
        return result

    def _resolve_anchor_company(self, session: Session, owner: User) -> uuid.UUID:
        existing = session.scalar(select(Company.id).order_by(Company.created_at, Company.id).limit(1))
        if existing is not None:
            return existing
        placeholder = Company(id=uuid.uuid4(), name=UNKNOWN_COMPANY_NAME, type=CompanyType.PROSPECT, owner_id=owner.id)
        session.add(placeholder)
        session.flush()
        logger.info("crm.import.placeholder_company_created", extra={"entity": "deals"})
        return placeholder.id

    def _import_deals(
        self,
        session: Session,
        rows: list[tuple[int, dict[str, str]]],
        owner: User,
        actor_user: ActorUser,
        company_ids: dict[str, uuid.UUID],
    ) -> ImportEntityResult:
        result = ImportEntityResult(entity="deals", total=len(rows))
        # Holds the fallback company once a row has resolved it.
        anchor: list[uuid.UUID] = []
        changed_by_id = self._history_author(session, actor_user, owner)

        for row_number, row in rows:
            name = row.get("Deal Name", "").strip()

            def handler(row: dict[str, str] = row, name: str = name) -> None:
                if not name:
                    raise SkipRecord("Deal Name is required")
                company_id = next(
                    (company_ids[ext] for ext in _split_external_ids(row.get("Associated Company IDs")) if ext in company_ids),
                    None,
                )
                if company_id is None:
                    if not anchor:
                        anchor.append(self._resolve_anchor_company(session, owner))
                    company_id = anchor[0]
                amount_raw = row.get("Amount", "")
                create_deal_record(
                    session,
                    name=name,
                    company_id=company_id,
                    owner_id=owner.id,
                    created_by_id=changed_by_id,
                    value=parse_amount(amount_raw) if amount_raw.strip() else DEFAULT_DEAL_AMOUNT,
                    probability=IMPORTED_DEAL_PROBABILITY,
                    stage=map_deal_stage(row.get("Deal Stage")),
                    expected_close_date=parse_hubspot_datetime(row.get("Close Date")) or utcnow() + DEFAULT_CLOSE_WINDOW,
                )
                session.flush()

            imported_before = result.imported
            self._run_record(session, result, row_number, name or f"row {row_number}", handler)
            if result.imported == imported_before:
                # A placeholder created by a failed row was rolled back with it.
                anchor.clear()
        return result

    def _history_author(self, session: Session, actor_user: ActorUser, owner: User) -> uuid.UUID:
        try:
            actor_id = uuid.UUID(actor_user.user_id)
        except ValueError:
            return owner.id
        return actor_id if session.get(User, actor_id) is not None else owner.id

    def _build_response(self, results: dict[str, ImportEntityResult], artifact: BackupArtifact) -> ImportResponse:
        errors = [issue for entity in ENTITY_ORDER for issue in results[entity].errors]
        imported = sum(result.imported for result in results.values())
        message = "HubSpot import completed successfully"
        if errors:
            message = f"HubSpot import completed with {len(errors)} issue{'s' if len(errors) != 1 else ''}"
        return ImportResponse(
            success=True,
            imported=imported,
            details=results,
            errors=errors,
            backup=BackupRead(**artifact.to_dict()),
            message=message,
        )
