from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from agency_crm.crm.enums import CompanySize, CompanyType, DealStage

LIFECYCLE_STAGE_MAP: dict[str, CompanyType] = {
    "lead": CompanyType.LEAD,
    "marketing qualified lead": CompanyType.LEAD,
    "sales qualified lead": CompanyType.PROSPECT,
    "opportunity": CompanyType.PROSPECT,
    "customer": CompanyType.CUSTOMER,
    "evangelist": CompanyType.CUSTOMER,
    "other": CompanyType.PROSPECT,
}

DEAL_STAGE_MAP: dict[str, DealStage] = {
    "inquiry": DealStage.INQUIRY,
    "website form submission": DealStage.INQUIRY,
    "appointment scheduled": DealStage.DISCOVERY_CALL_SCHEDULED,
    "discovery call scheduled": DealStage.DISCOVERY_CALL_SCHEDULED,
    "qualified to buy": DealStage.PROPOSAL_NEEDED,
    "proposal needed": DealStage.PROPOSAL_NEEDED,
    "presentation scheduled": DealStage.PROPOSAL_NEEDED,
    "proposal sent": DealStage.PROPOSAL_SENT,
    "proposal reviewed": DealStage.PROPOSAL_REVIEWED,
    "decision maker bought-in": DealStage.DECISION_MAKER,
    "decision maker": DealStage.DECISION_MAKER,
    "negotiation": DealStage.NEGOTIATION,
    "contract sent": DealStage.CONTRACT,
    "contract": DealStage.CONTRACT,
    "closed won": DealStage.CLOSED_WON,
    "closed lost": DealStage.CLOSED_LOST,
}

_SIZE_THRESHOLDS: tuple[tuple[int, CompanySize], ...] = (
    (10, CompanySize.SMALL),
    (50, CompanySize.MEDIUM),
    (200, CompanySize.LARGE),
    (1000, CompanySize.ENTERPRISE),
)

_LEADING_INT_RE = re.compile(r"^\s*(-?\d+)")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_CURRENCY_CHARS_RE = re.compile(r"[$€£,\s]")

_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
)


def _normalize(value: str | None) -> str:
    return (value or "").strip().lower()


def map_lifecycle_stage(value: str | None) -> CompanyType:
    return LIFECYCLE_STAGE_MAP.get(_normalize(value), CompanyType.PROSPECT)


def map_deal_stage(value: str | None) -> DealStage:
    normalized = _normalize(value)
    if normalized in DEAL_STAGE_MAP:
        return DEAL_STAGE_MAP[normalized]
    for stage in DealStage:
        if normalized == stage.value.lower():
            return stage
    return DealStage.INQUIRY


def map_company_size(value: str | None) -> CompanySize | None:
    match = _LEADING_INT_RE.match((value or "").replace(",", ""))
    if match is None:
        return None
    employees = int(match.group(1))
    if employees == 1:
        return CompanySize.SOLO
    for upper_bound, size in _SIZE_THRESHOLDS:
        if employees <= upper_bound:
            return size
    return CompanySize.CORPORATION


def _to_decimal(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation:
        return Decimal("0")


def parse_amount(value: str | None) -> Decimal:
    cleaned = _CURRENCY_CHARS_RE.sub("", value or "")
    if not cleaned:
        return Decimal("0")

    if "<" in cleaned:
        match = _NUMBER_RE.search(cleaned)
        return _to_decimal(match.group(0)) if match else Decimal("0")

    if "-" in cleaned.lstrip("-"):
        parts = cleaned.split("-")
        if len(parts) == 2:
            bounds = [re.sub(r"\D", "", part) for part in parts]
            if all(bounds):
                return (Decimal(bounds[0]) + Decimal(bounds[1])) / 2
            return Decimal("0")

    match = _NUMBER_RE.fullmatch(cleaned)
    if match is None:
        match = _NUMBER_RE.match(cleaned)
    return _to_decimal(match.group(0)) if match else Decimal("0")


def parse_hubspot_datetime(value: str | None) -> datetime | None:
    raw = (value or "").strip()
    if not raw:
        return None

    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        parsed = None

    if parsed is None:
        for date_format in _DATETIME_FORMATS:
            try:
                parsed = datetime.strptime(raw, date_format)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
