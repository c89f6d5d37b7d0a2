"""
Player name normalisation and fuzzy matching.

ESPN, The Odds API and the NHL API spell the same player differently
("Tim Stützle" / "Tim Stutzle", "Martin St. Louis Jr." / "Martin St Louis").
Every cross-source join in the engine goes through ``normalize_player_name``;
``match_player`` adds a rapidfuzz fallback for the residue.
"""

import logging
import re
import unicodedata
from typing import Dict, Iterable, Optional

from rapidfuzz import fuzz, process

logger = logging.getLogger(__name__)

# Minimum token_sort_ratio for a fuzzy match to be accepted.  Below this,
# "Quinn Hughes" and "Jack Hughes" start matching each other.
FUZZY_SCORE_CUTOFF = 88

_SUFFIX_RE = re.compile(r"\s+(jr|sr|ii|iii|iv)\.?$", re.IGNORECASE)
_INVALID_RE = re.compile(r"[^a-z\s-]")
_SPACE_RE = re.compile(r"\s+")


def normalize_player_name(name: Optional[str]) -> str:
    """Canonical join key for a player name.

    Strips accents, lowercases, drops generational suffixes and anything
    that is not a letter, space or hyphen.

    >>> normalize_player_name("Tim Stützle")
    'tim stutzle'
    >>> normalize_player_name("Martin St. Louis Jr.")
    'martin st louis'
    """
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFKD", name)
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    lowered = _SUFFIX_RE.sub("", ascii_only.lower().strip())
    cleaned = _INVALID_RE.sub("", lowered)
    return _SPACE_RE.sub(" ", cleaned).strip()


def match_player(name: str, candidates: Iterable[str]) -> Optional[str]:
    """Return the candidate that refers to the same player as ``name``.

    Exact normalised match first, then rapidfuzz ``token_sort_ratio`` with
    :data:`FUZZY_SCORE_CUTOFF`.  Returns the original candidate string, or
    None when nothing is close enough.
    """
    target = normalize_player_name(name)
    if not target:
        return None

    by_normalized: Dict[str, str] = {}
    for candidate in candidates:
        by_normalized.setdefault(normalize_player_name(candidate), candidate)

    if target in by_normalized:
        return by_normalized[target]

    result = process.extractOne(
        target,
        list(by_normalized),
        scorer=fuzz.token_sort_ratio,
        score_cutoff=FUZZY_SCORE_CUTOFF,
    )
    if result is None:
        return None

    matched, score, _ = result
    logger.debug("Fuzzy matched player '%s' -> '%s' (%.0f)", name, matched, score)
    return by_normalized[matched]
