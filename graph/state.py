from datetime import datetime
from typing import TypedDict, Optional, List, Dict
from matching.models import CandidateInput, DuplicateAction, ExistingRecordRef, Match, Severity

class DuplicateCheckState(TypedDict, total=False):
    """State shape for the duplicate check workflow."""
    candidate: CandidateInput
    user_id: str                     # salesperson triggering the check
    action: DuplicateAction
    now: datetime                    # reference time for recency
    sufficient: bool                 # enough identifying fields to match on
    normalized: Dict[str, str]       # name, email, phone, company, domain
    records: List[ExistingRecordRef] # narrowed candidate set from the gateway
    matches: List[Match]             # one per existing record, best first
    severity: Optional[Severity]
    warning_id: Optional[str]
    message: Optional[str]
    errors: List[str]
