from graph.state import DuplicateCheckState
from matching.severity import calculate_match_severity, max_severity
from config import MatchingConfig
from loguru import logger

def classify(state: DuplicateCheckState, settings: MatchingConfig) -> DuplicateCheckState:
    """Attach a severity tier to every match from confidence and contact recency."""
    matches = state.get("matches", [])
    now = state.get("now")

    state["matches"] = [
        match.model_copy(update={
            "severity": calculate_match_severity(
                match.confidence,
                match.existing_record.last_contact_date,
                now=now,
                recent_days=settings.recent_contact_days,
                high_confidence=settings.high_confidence,
                medium_confidence=settings.medium_confidence,
            )
        })
        for match in matches
    ]
    state["severity"] = max_severity(m.severity for m in state["matches"]) if matches else None

    logger.info(f"Classified {len(matches)} matches, overall severity: {state['severity']}")
    return state
