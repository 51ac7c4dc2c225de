"""
Venue name similarity.

Character trigram overlap in the style of PostgreSQL's pg_trgm: names are
lowercased, split into alphanumeric words, each word is padded with two
leading spaces and one trailing space, and the similarity is the Jaccard
index of the two trigram sets.
"""

import re
import unicodedata
from typing import FrozenSet, Optional

# Unicode letters and digits, no underscore
_WORD = re.compile(r'[^\W_]+')

# Names shorter than this use exact/substring comparison
MIN_TRIGRAM_LENGTH = 3


def normalize_name(name: Optional[str]) -> str:
    """Lowercase, NFC-normalize and collapse whitespace."""
    if not name:
        return ""
    return ' '.join(unicodedata.normalize('NFC', name).lower().split())


def trigrams(name: Optional[str]) -> FrozenSet[str]:
    """
    Return the trigram set of a name.

    "Red Lion" -> {"  r", " re", "red", "ed ", "  l", " li", "lio", "ion", "on "}
    """
    grams = set()
    for word in _WORD.findall(normalize_name(name)):
        padded = f"  {word} "
        for i in range(len(padded) - 2):
            grams.add(padded[i:i + 3])
    return frozenset(grams)


def similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Name similarity in [0, 1].

    Identical normalized names score 1.0. If either name is shorter than 3
    characters, a substring match scores the length ratio and anything else
    scores 0.0. Empty names never match.
    """
    norm_a = normalize_name(a)
    norm_b = normalize_name(b)

    if not norm_a or not norm_b:
        return 0.0

    if norm_a == norm_b:
        return 1.0

    if len(norm_a) < MIN_TRIGRAM_LENGTH or len(norm_b) < MIN_TRIGRAM_LENGTH:
        shorter, longer = sorted((norm_a, norm_b), key=len)
        if shorter in longer:
            return len(shorter) / len(longer)
        return 0.0

    grams_a = trigrams(norm_a)
    grams_b = trigrams(norm_b)
    if not grams_a or not grams_b:
        return 0.0

    return len(grams_a & grams_b) / len(grams_a | grams_b)
