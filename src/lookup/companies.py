"""Company identification: spotting a company in free text, or resolving a
name that an upstream model already extracted."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from src.lookup.models import EntityRef
from src.lookup.store import EntityStore, MatchMode

logger = logging.getLogger(__name__)

# Names shorter than this risk false positives with word-boundary matching
# ("ACE" inside "Palace"); exact and prefix matches still apply.
MIN_WORD_BOUNDARY_LENGTH = 4

MIN_BASE_NAME_LENGTH = 3
MIN_ALIAS_TOKEN_LENGTH = 4

STOP_TOKENS = frozenset(
    {"the", "and", "for", "inc", "llc", "ltd", "corp", "co", "company", "group", "of"}
)

_PARENTHETICAL = re.compile(r"\s*\([^)]*\)\s*")
_PAREN_CONTENT = re.compile(r"\(([^)]+)\)")
_ACRONYM = re.compile(r"^[A-Z]{2,5}$")


def base_name(full_name: str) -> str:
    """Company name with any parenthetical suffix removed."""
    return _PARENTHETICAL.sub(" ", full_name).strip()


def _alias_tokens(full_name: str) -> list[str]:
    match = _PAREN_CONTENT.search(full_name)
    if not match:
        return []
    return [
        token
        for token in re.split(r"[\s\-,]+", match.group(1).lower())
        if len(token) >= MIN_ALIAS_TOKEN_LENGTH and token not in STOP_TOKENS
    ]


def _acronym_lead(full_name: str) -> str | None:
    words = base_name(full_name).split()
    if words and _ACRONYM.match(words[0]):
        return words[0]
    return None


def _contains_word(text: str, word: str, ignore_case: bool = True) -> bool:
    flags = re.IGNORECASE if ignore_case else 0
    return re.search(rf"\b{re.escape(word)}\b", text, flags) is not None


def extract_company_from_message(
    message: str, companies: Sequence[EntityRef]
) -> EntityRef | None:
    """Find the company a message mentions, or ``None``.

    Passes run in order and the first hit wins:

    1. the full company name as a case-insensitive substring (longest wins);
    2. the base name without its parenthetical suffix;
    3. a whole-word alias token from inside the parentheses;
    4. an all-caps acronym leading the base name, matched case-sensitively
       as a whole word.
    """
    if not companies:
        return None

    lowered = message.lower()

    exact = [c for c in companies if c.display_name.lower() in lowered]
    if exact:
        return max(exact, key=lambda c: len(c.display_name))

    for company in companies:
        base = base_name(company.display_name).lower()
        if len(base) >= MIN_BASE_NAME_LENGTH and base in lowered:
            return company

    for company in companies:
        for token in _alias_tokens(company.display_name):
            if _contains_word(message, token):
                return company

    for company in companies:
        acronym = _acronym_lead(company.display_name)
        if acronym and _contains_word(message, acronym, ignore_case=False):
            return company

    return None


def find_company_in_message(message: str, store: EntityStore) -> EntityRef | None:
    return extract_company_from_message(message, store.list_companies())


def resolve_company_name(name: str, store: EntityStore) -> EntityRef | None:
    """Resolve an extracted company name: exact, then prefix, then word-boundary."""
    cleaned = name.strip()
    if not cleaned:
        return None

    modes = [MatchMode.EXACT, MatchMode.PREFIX]
    if len(cleaned) >= MIN_WORD_BOUNDARY_LENGTH:
        modes.append(MatchMode.WORD_BOUNDARY)

    for mode in modes:
        matches = store.find_companies(cleaned, mode)
        if matches:
            logger.debug("Company %r resolved via %s match", cleaned, mode.value)
            return matches[0]

    logger.warning("Extracted company %r not found in the entity store", cleaned)
    return None
