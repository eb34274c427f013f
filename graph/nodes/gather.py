from typing import Dict, List
from graph.state import DuplicateCheckState
from matching.models import ExistingRecordRef
from matching.normalize import is_free_email_domain
from config import MatchingConfig
from loguru import logger

def lookup_keys(normalized: Dict[str, str], settings: MatchingConfig) -> Dict[str, str]:
    """Exact and approximate keys worth sending to the gateway."""
    domain = normalized.get("domain", "")
    phone = normalized.get("phone", "")
    company = normalized.get("company", "")
    return {
        "email": normalized.get("email", ""),
        "phone": phone if len(phone) >= settings.min_phone_digits else "",
        "domain": "" if is_free_email_domain(domain) else domain,
        "company_token": company.split()[0] if company else "",
    }

def gather(state: DuplicateCheckState, gateway, settings: MatchingConfig) -> DuplicateCheckState:
    """Narrow the search space to a bounded set of existing records."""
    logger.info(f"Starting candidate lookup for user: {state.get('user_id', 'unknown')}")

    keys = lookup_keys(state.get("normalized", {}), settings)

    try:
        found: List[ExistingRecordRef] = []
        if keys["email"] or keys["phone"] or keys["domain"]:
            found.extend(gateway.find_by_exact_key(
                normalized_email=keys["email"] or None,
                normalized_phone=keys["phone"] or None,
                domain=keys["domain"] or None,
            ))
        if keys["company_token"]:
            found.extend(gateway.find_by_approximate_company(keys["company_token"]))
    except Exception as e:
        error_msg = f"Candidate lookup failed: {str(e)}"
        logger.error(error_msg)
        state.setdefault("errors", []).append(error_msg)
        state["records"] = []
        return state

    # Union of both lookups, first occurrence wins
    records: Dict[str, ExistingRecordRef] = {}
    for record in found:
        if settings.exclude_own_records and record.owner_id and record.owner_id == state.get("user_id"):
            continue
        records.setdefault(record.id, record)

    state["records"] = list(records.values())[:settings.candidate_limit]
    logger.info(f"Found {len(state['records'])} candidate records")
    return state
