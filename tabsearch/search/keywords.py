from __future__ import annotations

"""Keyword extraction for natural-language tab queries."""

import logging

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset(
    {
        # pronouns and articles
        "i", "me", "my", "your", "a", "an", "the",
        # tab search filler
        "tab", "tabs", "looking", "find", "search", "show", "open",
        # prepositions
        "for", "about", "in", "on", "at", "to", "from", "with", "of",
        # conjunctions
        "and", "or", "but",
        # demonstratives
        "this", "that", "these", "those",
        # auxiliary and filler verbs
        "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did",
        "will", "would", "should", "could", "may", "might", "can",
        "want", "need", "am", "try", "get", "go", "see",
        # vague quantifiers
        "related", "some", "any", "all", "where",
    }
)

MIN_KEYWORD_LENGTH = 3


def extract_keywords(query: str) -> list[str]:
    """Return the meaningful terms of ``query``.

    Stop words and tokens shorter than three characters are dropped. When
    nothing survives, the unfiltered tokens are returned so a non-empty query
    never yields zero terms.
    """
    words = query.lower().split()
    keywords = [
        word for word in words if word not in STOP_WORDS and len(word) >= MIN_KEYWORD_LENGTH
    ]
    if not keywords:
        logger.debug("keywords_unfiltered", extra={"token_count": len(words)})
        return words
    return keywords
