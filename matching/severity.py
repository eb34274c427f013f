from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from config import HIGH_CONFIDENCE, MEDIUM_CONFIDENCE, RECENT_CONTACT_DAYS
from matching.models import Severity


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_recent_contact(
    last_contact_date: Optional[datetime],
    now: Optional[datetime] = None,
    recent_days: int = RECENT_CONTACT_DAYS,
) -> bool:
    if last_contact_date is None:
        return False
    now = _as_utc(now or datetime.now(timezone.utc))
    return now - _as_utc(last_contact_date) <= timedelta(days=recent_days)


def calculate_match_severity(
    confidence: float,
    last_contact_date: Optional[datetime] = None,
    now: Optional[datetime] = None,
    recent_days: int = RECENT_CONTACT_DAYS,
    high_confidence: float = HIGH_CONFIDENCE,
    medium_confidence: float = MEDIUM_CONFIDENCE,
) -> Severity:
    """
    Combine match strength with recency of the existing record's last contact.

    Args:
        confidence: Match confidence in [0, 1]
        last_contact_date: When the existing record was last worked, if known
        now: Reference time (defaults to the current UTC time)

    Returns:
        CRITICAL for strong matches contacted recently, HIGH for mid-strength
        recent ones, MEDIUM for strong matches gone quiet, LOW otherwise
    """
    recent = is_recent_contact(last_contact_date, now, recent_days)

    if confidence >= high_confidence:
        return Severity.CRITICAL if recent else Severity.MEDIUM

    if confidence >= medium_confidence and recent:
        return Severity.HIGH

    return Severity.LOW


def max_severity(severities: Iterable[Severity]) -> Severity:
    return max(severities, key=lambda s: s.rank, default=Severity.LOW)
