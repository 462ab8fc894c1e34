"""Name normalization utilities for team, fighter and league matching.

Handles common variations across providers:
- Club affixes: "Arsenal FC" → "arsenal", "FC Barcelona" → "barcelona"
- Punctuation: "St. Louis Blues" → "st louis blues"
- Accents: "Atlético Madrid" → "atletico madrid"
- Case: "REAL MADRID" → "real madrid"
- Extra spaces: "Boston  Celtics" → "boston celtics"
"""
import re
import unicodedata

from rapidfuzz import fuzz

# Club affixes dropped when they stand alone at either end of a team name
AFFIXES = {
    'fc', 'cf', 'afc', 'sc', 'ac', 'sk', 'fk', 'bk', 'cd', 'ud', 'club', 'calcio',
}

DEFAULT_FUZZY_THRESHOLD = 90


def normalize(name: str) -> str:
    """
    Normalize a team or fighter name for comparison.

    Steps:
    1. Normalize unicode characters (accents)
    2. Convert to lowercase
    3. Remove punctuation (but keep letters)
    4. Remove standalone club affixes at either end
    5. Remove extra whitespace

    Args:
        name: The name to normalize

    Returns:
        Normalized name string

    Examples:
        >>> normalize("Atlético Madrid")
        'atletico madrid'
        >>> normalize("FC Barcelona")
        'barcelona'
        >>> normalize("St. Louis  Blues")
        'st louis blues'
    """
    if not name:
        return ""

    name = _normalize_unicode(name).lower()
    name = re.sub(r'[^\w\s]', '', name)
    parts = name.split()

    # Never strip a name down to nothing ("FC" alone stays "fc")
    while len(parts) > 1 and parts[0] in AFFIXES:
        parts = parts[1:]
    while len(parts) > 1 and parts[-1] in AFFIXES:
        parts = parts[:-1]

    return ' '.join(parts)


def normalize_key(value: str) -> str:
    """
    Collapse a string to lowercase ``[a-z0-9]`` for dedup keys.

    Examples:
        >>> normalize_key("Man. United")
        'manunited'
        >>> normalize_key("Köln")
        'koln'
    """
    if not value:
        return ""
    return re.sub(r'[^a-z0-9]', '', _normalize_unicode(str(value)).lower())


def _normalize_unicode(name: str) -> str:
    """Remove accents and diacritics ('é' → 'e', 'č' → 'c')."""
    normalized = unicodedata.normalize('NFD', name)
    return ''.join(
        c for c in normalized
        if unicodedata.category(c) != 'Mn'
    )


def name_similarity(name1: str, name2: str) -> float:
    """WRatio similarity (0-100) of two names after normalization."""
    norm1, norm2 = normalize(name1), normalize(name2)
    if not norm1 or not norm2:
        return 0.0
    return fuzz.WRatio(norm1, norm2)


def are_names_equal(
    name1: str,
    name2: str,
    fuzzy: bool = False,
    threshold: int = DEFAULT_FUZZY_THRESHOLD,
) -> bool:
    """
    Check if two names are equal after normalization.

    Args:
        name1: First name
        name2: Second name
        fuzzy: If True, also try fuzzy matching as fallback
        threshold: Minimum WRatio score for a fuzzy match

    Returns:
        True if names match
    """
    norm1 = normalize(name1)
    norm2 = normalize(name2)

    if not norm1 or not norm2:
        return False
    if norm1 == norm2:
        return True

    if fuzzy:
        return fuzz.WRatio(norm1, norm2) >= threshold

    return False
