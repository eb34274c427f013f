import os
import json
from dataclasses import dataclass, field
from typing import Dict, List
from loguru import logger

# Severity / matching thresholds
HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.65
RECENT_CONTACT_DAYS = int(os.getenv("DUPLICATE_RECENT_CONTACT_DAYS", "90"))

MATCH_FLOOR = float(os.getenv("DUPLICATE_MATCH_FLOOR", "0.5"))
COMPANY_MATCH_THRESHOLD = 0.8
MIN_PHONE_DIGITS = 7
CANDIDATE_LIMIT = int(os.getenv("DUPLICATE_CANDIDATE_LIMIT", "50"))

NORMALIZATION_CONFIG_PATH = os.getenv("NORMALIZATION_JSON", "./infra/normalization.json")

DEFAULT_NORMALIZATION_RULES = {
    "company_suffixes": [
        "corp", "corporation", "inc", "incorporated", "llc", "ltd", "limited",
        "plc", "gmbh", "sa", "sas", "bv", "ab", "oy",
    ],
    "person_titles": ["mr", "mrs", "ms", "miss", "mx", "dr", "prof", "sir", "dame"],
    "person_suffixes": ["jr", "sr", "ii", "iii", "iv", "phd", "md", "esq"],
    "free_email_domains": [
        "gmail.com", "googlemail.com", "yahoo.com", "outlook.com",
        "hotmail.com", "live.com", "icloud.com", "aol.com", "proton.me",
    ],
}


def load_normalization_rules(path: str = None) -> Dict[str, List[str]]:
    """Load normalization word lists from configuration file."""
    path = path or NORMALIZATION_CONFIG_PATH
    try:
        with open(path, "r") as f:
            loaded = json.load(f)
    except FileNotFoundError:
        logger.warning(f"Normalization config not found at {path}, using defaults")
        return dict(DEFAULT_NORMALIZATION_RULES)
    except json.JSONDecodeError:
        logger.error(f"Invalid JSON in normalization config {path}")
        return dict(DEFAULT_NORMALIZATION_RULES)

    rules = dict(DEFAULT_NORMALIZATION_RULES)
    for key in DEFAULT_NORMALIZATION_RULES:
        if isinstance(loaded.get(key), list):
            rules[key] = [str(item).lower() for item in loaded[key]]
    return rules


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MatchingConfig:
    """Thresholds and switches for one DuplicateDetectionService instance."""

    # Minimum confidence for CRITICAL / MEDIUM tiers
    high_confidence: float = HIGH_CONFIDENCE

    # Minimum confidence for the HIGH tier (recent contact only)
    medium_confidence: float = MEDIUM_CONFIDENCE

    # Contact within this many days counts as recent
    recent_contact_days: int = RECENT_CONTACT_DAYS

    # Per-type confidences below this are noise
    match_floor: float = MATCH_FLOOR

    # Company similarity needed before a name match is boosted
    company_match_threshold: float = COMPANY_MATCH_THRESHOLD

    # Shorter phone numbers are not compared
    min_phone_digits: int = MIN_PHONE_DIGITS

    # Upper bound on records pulled from the gateway per check
    candidate_limit: int = CANDIDATE_LIMIT

    # Ignore records the triggering user already owns
    exclude_own_records: bool = field(
        default_factory=lambda: _env_flag("DUPLICATE_EXCLUDE_OWN_RECORDS")
    )

    @classmethod
    def from_env(cls) -> "MatchingConfig":
        return cls()
