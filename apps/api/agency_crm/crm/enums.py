from enum import Enum


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    SALES_REP = "SALES_REP"


class DealStage(str, Enum):
    INQUIRY = "INQUIRY"
    DISCOVERY_CALL_SCHEDULED = "DISCOVERY_CALL_SCHEDULED"
    PROPOSAL_NEEDED = "PROPOSAL_NEEDED"
    PROPOSAL_SENT = "PROPOSAL_SENT"
    PROPOSAL_REVIEWED = "PROPOSAL_REVIEWED"
    DECISION_MAKER = "DECISION_MAKER"
    NEGOTIATION = "NEGOTIATION"
    CONTRACT = "CONTRACT"
    CLOSED_WON = "CLOSED_WON"
    CLOSED_LOST = "CLOSED_LOST"

    @property
    def is_closed(self) -> bool:
        return self in CLOSED_STAGES


CLOSED_STAGES = frozenset({DealStage.CLOSED_WON, DealStage.CLOSED_LOST})
OPEN_STAGES: tuple[DealStage, ...] = tuple(stage for stage in DealStage if stage not in CLOSED_STAGES)


class ClosedStatus(str, Enum):
    WON = "WON"
    LOST = "LOST"


class LostReason(str, Enum):
    PRICE = "PRICE"
    TIMING = "TIMING"
    COMPETITOR = "COMPETITOR"
    NO_BUDGET = "NO_BUDGET"
    NO_DECISION = "NO_DECISION"
    WENT_SILENT = "WENT_SILENT"
    NOT_A_FIT = "NOT_A_FIT"
    OTHER = "OTHER"


class CompanyType(str, Enum):
    PROSPECT = "PROSPECT"
    LEAD = "LEAD"
    CUSTOMER = "CUSTOMER"
    FORMER_CUSTOMER = "FORMER_CUSTOMER"
    PARTNER = "PARTNER"
    COMPETITOR = "COMPETITOR"


class CompanySize(str, Enum):
    SOLO = "SOLO"
    SMALL = "SMALL"
    MEDIUM = "MEDIUM"
    LARGE = "LARGE"
    ENTERPRISE = "ENTERPRISE"
    CORPORATION = "CORPORATION"


class LeadSource(str, Enum):
    WEBSITE = "WEBSITE"
    REFERRAL = "REFERRAL"
    COLD_OUTREACH = "COLD_OUTREACH"
    LINKEDIN = "LINKEDIN"
    CONFERENCE = "CONFERENCE"
    INBOUND_CALL = "INBOUND_CALL"
    PARTNER = "PARTNER"
    ADVERTISING = "ADVERTISING"
    CONTENT = "CONTENT"
    OTHER = "OTHER"


class ContactStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    DO_NOT_CONTACT = "DO_NOT_CONTACT"
    CHURNED = "CHURNED"
