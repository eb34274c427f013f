from typing import Dict, Optional, Tuple
from graph.state import DuplicateCheckState
from matching.models import ExistingRecordRef, Match, MatchType, MATCH_TYPE_PRIORITY
from matching.normalize import (
    normalize_person_name,
    normalize_company_name,
    normalize_email,
    normalize_phone,
    extract_domain_from_email,
    is_free_email_domain,
)
from matching.similarity import calculate_string_similarity
from config import MatchingConfig
from loguru import logger

# Name/company blend when both line up
NAME_WEIGHT = 0.8
COMPANY_WEIGHT = 0.3

# Trailing-digit phone agreement
PHONE_SUFFIX_CONFIDENCE = 0.8

def type_scores(normalized: Dict[str, str], record: ExistingRecordRef,
                settings: MatchingConfig) -> Dict[MatchType, Tuple[float, Dict]]:
    """Confidence per applicable match type, with the values compared."""
    scores: Dict[MatchType, Tuple[float, Dict]] = {}

    email = normalized.get("email", "")
    existing_email = normalize_email(record.email)
    if email and email == existing_email:
        scores[MatchType.EMAIL] = (1.0, {"candidate": email, "existing": record.email, "exact_match": True})

    phone = normalized.get("phone", "")
    existing_phone = normalize_phone(record.phone)
    if len(phone) >= settings.min_phone_digits and len(existing_phone) >= settings.min_phone_digits:
        if phone == existing_phone:
            scores[MatchType.PHONE] = (1.0, {"candidate": phone, "existing": record.phone, "exact_match": True})
        elif phone[-settings.min_phone_digits:] == existing_phone[-settings.min_phone_digits:]:
            # Same subscriber number written with and without a country code
            scores[MatchType.PHONE] = (PHONE_SUFFIX_CONFIDENCE, {
                "candidate": phone,
                "existing": record.phone,
                "exact_match": False,
            })

    domain = normalized.get("domain", "")
    existing_domain = extract_domain_from_email(existing_email)
    if domain and domain == existing_domain and not is_free_email_domain(domain):
        scores[MatchType.COMPANY_DOMAIN] = (1.0, {"candidate": domain, "existing": existing_domain, "exact_match": True})

    company = normalized.get("company", "")
    existing_company = normalize_company_name(record.company)
    company_similarity = None
    if company and existing_company:
        company_similarity = calculate_string_similarity(company, existing_company)
        scores[MatchType.COMPANY_NAME] = (company_similarity, {
            "candidate": company,
            "existing": record.company,
            "similarity": company_similarity,
        })

    name = normalized.get("name", "")
    existing_name = normalize_person_name(record.name)
    if name and existing_name:
        name_similarity = calculate_string_similarity(name, existing_name)
        details = {"candidate": name, "existing": record.name, "similarity": name_similarity}
        if company_similarity is not None and company_similarity >= settings.company_match_threshold:
            blended = min(1.0, NAME_WEIGHT * name_similarity + COMPANY_WEIGHT * company_similarity)
            details["company_similarity"] = company_similarity
            scores[MatchType.PERSON_NAME_COMPANY] = (max(name_similarity, blended), details)
        else:
            scores[MatchType.PERSON_NAME] = (name_similarity, details)

    return scores

def best_match(normalized: Dict[str, str], record: ExistingRecordRef,
               settings: MatchingConfig) -> Optional[Match]:
    """Representative match for one existing record, or None below the floor."""
    scores = {
        match_type: scored
        for match_type, scored in type_scores(normalized, record, settings).items()
        if scored[0] >= settings.match_floor
    }
    if not scores:
        return None

    match_type = min(scores, key=lambda t: (-scores[t][0], MATCH_TYPE_PRIORITY.index(t)))
    confidence, details = scores[match_type]
    details = dict(details)
    details["scores"] = {t.value: round(s[0], 4) for t, s in scores.items()}

    return Match(
        match_type=match_type,
        confidence=confidence,
        existing_record=record,
        match_details=details,
    )

def score(state: DuplicateCheckState, settings: MatchingConfig) -> DuplicateCheckState:
    """Score every narrowed record and keep the best match per record."""
    records = state.get("records", [])
    logger.info(f"Starting scoring for {len(records)} candidate records")

    normalized = state.get("normalized", {})
    best: Dict[str, Match] = {}
    for record in records:
        match = best_match(normalized, record, settings)
        if match is None:
            continue
        current = best.get(record.id)
        if current is None or match.confidence > current.confidence:
            best[record.id] = match

    state["matches"] = sorted(best.values(), key=lambda m: (-m.confidence, m.existing_record.id))
    logger.info(f"Scoring produced {len(state['matches'])} matches")
    return state
