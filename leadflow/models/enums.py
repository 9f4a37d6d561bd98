# models/enums.py
from enum import Enum


class LeadStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class LeadGrade(str, Enum):
    COLD = "COLD"
    WARM = "WARM"
    HOT = "HOT"
    QUALIFIED = "QUALIFIED"


class ActivityType(str, Enum):
    PROPERTY_VIEW = "PROPERTY_VIEW"
    PROPERTY_INQUIRY = "PROPERTY_INQUIRY"
    CONTACT_FORM = "CONTACT_FORM"
    FAVORITE_ADDED = "FAVORITE_ADDED"
    SEARCH_PERFORMED = "SEARCH_PERFORMED"
    RETURN_VISIT = "RETURN_VISIT"
    PHONE_CALL_MADE = "PHONE_CALL_MADE"
    EMAIL_OPENED = "EMAIL_OPENED"
    BROCHURE_DOWNLOADED = "BROCHURE_DOWNLOADED"


class AgentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class AssignmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    ON_HOLD = "ON_HOLD"


class AssignmentPriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"


class PipelineStageName(str, Enum):
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    PROPERTY_VIEWING = "PROPERTY_VIEWING"
    PROPOSAL = "PROPOSAL"
    NEGOTIATION = "NEGOTIATION"
    APPLICATION = "APPLICATION"
    CLOSING = "CLOSING"
    ON_HOLD = "ON_HOLD"
    WON = "WON"
    LOST = "LOST"


class PipelineActivityType(str, Enum):
    CALL = "CALL"
    EMAIL = "EMAIL"
    MEETING = "MEETING"
    PROPERTY_SHOWING = "PROPERTY_SHOWING"
    PROPOSAL_SENT = "PROPOSAL_SENT"
    FOLLOW_UP = "FOLLOW_UP"
    NOTE = "NOTE"


def sql_in(column: str, enum_cls) -> str:
    """CHECK constraint body restricting `column` to the enum's values."""
    values = ",".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"
