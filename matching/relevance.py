from matching.models import ExistingRecordRef
from matching.normalize import normalize_company_name, normalize_email, normalize_person_name
from matching.similarity import calculate_string_similarity

EXACT_SCORE = 1.0
SIMILARITY_WEIGHT = 0.9
TERM_SCORE = 0.6


def calculate_search_relevance(query: str, record: ExistingRecordRef) -> float:
    """Rank a record for a free-text duplicate search, 0..1."""
    needle = " ".join((query or "").lower().split())
    if not needle:
        return 0.0

    name = normalize_person_name(record.name)
    company = normalize_company_name(record.company)
    email = normalize_email(record.email)

    if any(needle in value for value in (name, company, email) if value):
        return EXACT_SCORE

    score = 0.0
    for value in (name, company):
        if value:
            score = max(score, calculate_string_similarity(needle, value) * SIMILARITY_WEIGHT)

    for term in needle.split():
        if len(term) < 2:
            continue
        if (name and term in name) or (company and term in company):
            score = max(score, TERM_SCORE)

    return score
