"""
Entity name normalization for deduplication.

The dedup key defines canonical identity: two names with the same key are the
same canonical entity, regardless of entity type. Changing these rules changes
which rows collide on the UNIQUE constraint, so they are kept deterministic
and free of domain-specific heuristics (no honorific or suffix stripping).
"""

from __future__ import annotations

import re
import unicodedata

# Characters stripped from the edges of a display-normalized name
_EDGE_PUNCTUATION = ".,;:!?\"'()[]{}…-_/\\"

# Whitespace, hyphens, underscores and apostrophes removed from the dedup key.
# Other inner symbols are significant ("C", "C++" and "C#" stay distinct).
_KEY_STRIP_RE = re.compile(r"[\s\-_'\u2019]")


def normalize_entity_name(name: str) -> str:
    """
    Normalize an entity name for comparison.

    Steps:
    1. Unicode NFKC normalization
    2. Casefold
    3. Collapse whitespace
    4. Strip leading/trailing punctuation only

    Args:
        name: The entity name to normalize.

    Returns:
        Normalized name, or "" when nothing meaningful remains.

    Examples:
        >>> normalize_entity_name("  Sam   Altman ")
        'sam altman'
        >>> normalize_entity_name("OpenAI.")
        'openai'
    """
    if not name:
        return ""

    text = unicodedata.normalize("NFKC", name)
    text = text.casefold()
    text = " ".join(text.split())
    text = text.strip(_EDGE_PUNCTUATION)
    # Stripping may expose whitespace next to removed punctuation
    return text.strip()


def dedup_key(name: str) -> str:
    """
    Compute the canonical dedup key for an entity name.

    Applies normalize_entity_name, then removes inner whitespace, hyphens,
    underscores and apostrophes so spacing variants collapse together.
    Other symbols inside the name are kept.

    Args:
        name: Raw entity name from staging or a manual request.

    Returns:
        Dedup key; "" means the name is not a valid entity name.

    Examples:
        >>> dedup_key("Open AI ")
        'openai'
        >>> dedup_key("O'Brien")
        'obrien'
        >>> dedup_key("...")
        ''
    """
    return _KEY_STRIP_RE.sub("", normalize_entity_name(name))
