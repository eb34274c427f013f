from datetime import datetime, timezone
from typing import List, Optional
from graph.state import DuplicateCheckState
from matching.models import DuplicateWarning, Match, MatchType, Severity
from loguru import logger

def describe_time_ago(when: datetime, now: Optional[datetime] = None) -> str:
    """Human-readable distance between two moments, e.g. "5 days ago"."""
    now = now or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    seconds = int((now - when).total_seconds())

    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    if seconds < 2592000:
        return f"{seconds // 86400} days ago"
    if seconds < 31536000:
        return f"{seconds // 2592000} months ago"
    return f"{seconds // 31536000} years ago"

def rank_matches(matches: List[Match]) -> List[Match]:
    """Most severe first, then most confident."""
    return sorted(matches, key=lambda m: (-m.severity.rank, -m.confidence, m.existing_record.id))

def primary_warning_type(matches: List[Match]) -> MatchType:
    return rank_matches(matches)[0].match_type

def build_warning_message(matches: List[Match], now: Optional[datetime] = None) -> Optional[str]:
    """Summarize the most serious match for the salesperson about to proceed."""
    if not matches:
        return None

    serious = [m for m in rank_matches(matches) if m.severity in (Severity.CRITICAL, Severity.HIGH)]
    if serious:
        match = serious[0]
        record = match.existing_record
        time_ago = describe_time_ago(record.last_contact_date, now) if record.last_contact_date else "some time ago"
        field = match.match_type.value.lower().replace("_", " ")
        owner = record.owner_name or "another salesperson"
        return f"Potential duplicate detected: similar {field} was contacted {time_ago} by {owner}"

    owner = rank_matches(matches)[0].existing_record.owner_name
    owned_by = f", top match owned by {owner}" if owner else ""
    return f"{len(matches)} potential duplicate(s) found{owned_by}. Please review before proceeding."

def warn(state: DuplicateCheckState, warning_store) -> DuplicateCheckState:
    """Persist a warning for the surviving matches and phrase the message."""
    matches = state.get("matches", [])
    logger.info(f"Starting warning creation for {len(matches)} matches")

    warning = DuplicateWarning(
        severity=state["severity"],
        warning_type=primary_warning_type(matches),
        triggered_by_user_id=state["user_id"],
        action=state["action"],
        candidate_snapshot=state["candidate"],
        matches=matches,
        created_at=state["now"],
    )
    state["warning_id"] = warning_store.create_warning(warning)
    state["message"] = build_warning_message(matches, state.get("now"))

    logger.info(f"Duplicate warning {state['warning_id']} created with severity {warning.severity.value}")
    return state
