import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceType(str, Enum):
    LEAD = "LEAD"
    PIPELINE_ITEM = "PIPELINE_ITEM"


class MatchType(str, Enum):
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    COMPANY_NAME = "COMPANY_NAME"
    COMPANY_DOMAIN = "COMPANY_DOMAIN"
    PERSON_NAME = "PERSON_NAME"
    PERSON_NAME_COMPANY = "PERSON_NAME_COMPANY"


# Tie-break order when two match types score the same for one record
MATCH_TYPE_PRIORITY = [
    MatchType.EMAIL,
    MatchType.PHONE,
    MatchType.COMPANY_DOMAIN,
    MatchType.PERSON_NAME_COMPANY,
    MatchType.COMPANY_NAME,
    MatchType.PERSON_NAME,
]


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return SEVERITY_ORDER.index(self)


SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]


class DuplicateAction(str, Enum):
    LEAD_CREATE = "LEAD_CREATE"
    LEAD_UPDATE = "LEAD_UPDATE"
    PIPELINE_CREATE = "PIPELINE_CREATE"
    PIPELINE_UPDATE = "PIPELINE_UPDATE"
    CONTACT_ADD = "CONTACT_ADD"
    COMPANY_ADD = "COMPANY_ADD"


class UserDecision(str, Enum):
    PROCEEDED = "PROCEEDED"
    CANCELLED = "CANCELLED"
    MERGED = "MERGED"


class CandidateInput(BaseModel):
    """The not-yet-stored record being checked for duplicates."""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    title: Optional[str] = None

    @field_validator("email")
    @classmethod
    def email_must_be_valid(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        value = value.strip()
        if not EMAIL_PATTERN.match(value):
            raise ValueError(f"invalid email address: {value!r}")
        return value

    def has_identifying_field(self) -> bool:
        return any(value and value.strip() for value in (self.name, self.email, self.phone, self.company))

    def signal_count(self) -> int:
        """Number of usable identifying fields."""
        signals = [
            bool(self.name and len(self.name.strip()) >= 2),
            bool(self.email),
            bool(self.phone and self.phone.strip()),
            bool(self.company and self.company.strip()),
        ]
        return sum(signals)


class ExistingRecordRef(BaseModel):
    """Read-only projection of a stored lead or pipeline item."""
    id: str
    source_id: str
    source_type: SourceType
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    owner_id: Optional[str] = None
    owner_name: Optional[str] = None
    last_contact_date: Optional[datetime] = None
    status: Optional[str] = None
    is_active: bool = True


class Match(BaseModel):
    match_type: MatchType
    confidence: float = Field(ge=0.0, le=1.0)
    severity: Severity = Severity.LOW
    existing_record: ExistingRecordRef
    match_details: Dict[str, Any] = Field(default_factory=dict)


class DuplicateWarning(BaseModel):
    """Persisted outcome of a detection run that found at least one match."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    severity: Severity
    warning_type: MatchType
    triggered_by_user_id: str
    action: DuplicateAction
    candidate_snapshot: CandidateInput
    matches: List[Match]
    created_at: datetime = Field(default_factory=utcnow)
    decision_made: bool = False
    user_decision: Optional[UserDecision] = None
    decision_at: Optional[datetime] = None
    proceed_reason: Optional[str] = None


class AuditLogEntry(BaseModel):
    warning_id: str
    user_id: str
    decision: UserDecision
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class DuplicateCheckResult(BaseModel):
    has_warning: bool
    severity: Optional[Severity] = None
    warning_id: Optional[str] = None
    message: Optional[str] = None
    matches: List[Match] = Field(default_factory=list)


class DuplicateStatistics(BaseModel):
    total_warnings: int
    proceed_count: int
    cancelled_count: int
    merged_count: int
    proceed_rate: float
    severity_breakdown: Dict[Severity, int]
