"""Canonical forms for the fields compared during duplicate detection.

Every function here is total (``None`` and empty input give ``""``) and
idempotent, so values may be normalized at the storage boundary and again at
comparison time without drifting. The curated word lists (legal-entity
suffixes, personal titles, generational suffixes, free-mail providers) come
from ``infra/normalization.json`` via :func:`config.load_normalization_rules`.
"""

import re
from dataclasses import dataclass
from typing import FrozenSet, List, Optional

from config import load_normalization_rules

_NON_WORD = re.compile(r"[^\w\s-]")
_LOOSE_HYPHEN = re.compile(r"(?<!\w)-+|-+(?!\w)")
_NAME_DELETE = re.compile(r"['’\-.]")
_NAME_SEPARATORS = re.compile(r"[^\w\s]")
_NON_DIGIT = re.compile(r"[^0-9]")
_TRUNK_PREFIX = re.compile(r"\(\s*0\s*\)")


@dataclass(frozen=True)
class NormalizationRules:
    company_suffixes: FrozenSet[str]
    person_titles: FrozenSet[str]
    person_suffixes: FrozenSet[str]
    free_email_domains: FrozenSet[str]

    @classmethod
    def load(cls, path: Optional[str] = None) -> "NormalizationRules":
        raw = load_normalization_rules(path)
        return cls(
            company_suffixes=frozenset(raw["company_suffixes"]),
            person_titles=frozenset(raw["person_titles"]),
            person_suffixes=frozenset(raw["person_suffixes"]),
            free_email_domains=frozenset(raw["free_email_domains"]),
        )


DEFAULT_RULES = NormalizationRules.load()


def _strip_edges(tokens: List[str], leading: FrozenSet[str], trailing: FrozenSet[str]) -> List[str]:
    # Never strip the last remaining token
    while len(tokens) > 1 and tokens[0] in leading:
        tokens = tokens[1:]
    while len(tokens) > 1 and tokens[-1] in trailing:
        tokens = tokens[:-1]
    return tokens


def normalize_company_name(company: Optional[str], rules: NormalizationRules = DEFAULT_RULES) -> str:
    """Lowercase, drop punctuation, leading "the" and legal-entity suffixes."""
    if not company:
        return ""
    text = company.strip().lower()
    text = _NON_WORD.sub("", text)
    text = _LOOSE_HYPHEN.sub("", text)
    tokens = _strip_edges(text.split(), frozenset(["the"]), rules.company_suffixes)
    return " ".join(tokens)


def normalize_person_name(name: Optional[str], rules: NormalizationRules = DEFAULT_RULES) -> str:
    """Lowercase, drop titles/suffixes, delete apostrophes and hyphens."""
    if not name:
        return ""
    text = name.strip().lower()
    text = _NAME_DELETE.sub("", text)
    text = _NAME_SEPARATORS.sub(" ", text)
    tokens = _strip_edges(text.split(), rules.person_titles, rules.person_suffixes)
    return " ".join(tokens)


def normalize_email(email: Optional[str]) -> str:
    if not email:
        return ""
    return email.strip().lower()


def normalize_phone(phone: Optional[str]) -> str:
    """Digits only; an international "(0)" trunk marker is dropped."""
    if not phone:
        return ""
    return _NON_DIGIT.sub("", _TRUNK_PREFIX.sub("", phone))


def extract_domain_from_email(email: Optional[str]) -> str:
    if not email or "@" not in email:
        return ""
    return email.rsplit("@", 1)[1].strip().lower()


def is_free_email_domain(domain: str, rules: NormalizationRules = DEFAULT_RULES) -> bool:
    return domain in rules.free_email_domains
