from graph.state import DuplicateCheckState
from matching.normalize import (
    normalize_person_name,
    normalize_company_name,
    normalize_email,
    normalize_phone,
    extract_domain_from_email,
)
from loguru import logger

MIN_SIGNALS = 2

def capture(state: DuplicateCheckState) -> DuplicateCheckState:
    """Check the candidate carries enough signal and normalize its fields."""
    candidate = state["candidate"]
    logger.info(f"Starting capture for candidate: {candidate.email or candidate.name or 'unknown'}")

    signals = candidate.signal_count()
    state["sufficient"] = signals >= MIN_SIGNALS
    if not state["sufficient"]:
        logger.info(f"Insufficient candidate data ({signals} usable fields), skipping duplicate check")
        state["matches"] = []
        return state

    email = normalize_email(candidate.email)
    state["normalized"] = {
        "name": normalize_person_name(candidate.name),
        "email": email,
        "phone": normalize_phone(candidate.phone),
        "company": normalize_company_name(candidate.company),
        "domain": extract_domain_from_email(email),
    }

    logger.info(f"Capture completed with {signals} usable fields")
    return state
