from __future__ import annotations

"""Hashtag query parsing and the tag-only search fast path."""

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from tabsearch.search.types import Document, ResultSet, ResultSource, ScoredCandidate

logger = logging.getLogger(__name__)

TAG_MATCH_SCORE = 10
_SPLIT_RE = re.compile(r"[,\s]+")


@dataclass(frozen=True)
class HashtagQuery:
    """Parsed hashtag query."""
    is_hashtag_search: bool
    tags: tuple[str, ...] = ()


def parse_hashtag_query(query: str) -> HashtagQuery:
    """Detect ``#tag`` tokens in a query."""
    trimmed = query.strip()
    if "#" not in trimmed:
        return HashtagQuery(is_hashtag_search=False)
    tags = tuple(
        token[1:].lower()
        for token in _SPLIT_RE.split(trimmed)
        if token.startswith("#") and len(token) > 1
    )
    if not tags:
        return HashtagQuery(is_hashtag_search=False)
    return HashtagQuery(is_hashtag_search=True, tags=tags)


def tags_match(query_tag: str, document_tag: str) -> bool:
    """Equality or substring containment in either direction."""
    if not query_tag or not document_tag:
        return False
    return (
        query_tag == document_tag
        or query_tag in document_tag
        or document_tag in query_tag
    )


def perform_tag_search(documents: Iterable[Document], tags: Iterable[str]) -> ResultSet:
    """Return every document with at least one tag matching a query tag."""
    query_tags = [tag.lower() for tag in tags]
    candidates: list[ScoredCandidate] = []
    for document in documents:
        document_tags = [tag.lower() for tag in document.tags]
        matched: list[str] = []
        for query_tag in query_tags:
            if query_tag in matched:
                continue
            if any(tags_match(query_tag, document_tag) for document_tag in document_tags):
                matched.append(query_tag)
        if not matched:
            continue
        candidates.append(
            ScoredCandidate(
                id=document.id,
                score=TAG_MATCH_SCORE * len(matched),
                reason="Matched tags: " + ", ".join(f"#{tag}" for tag in matched),
                source=ResultSource.LEXICAL,
                matched_terms=tuple(matched),
            )
        )
    # Stable, so equal scores keep the listing order.
    candidates.sort(key=lambda candidate: candidate.score, reverse=True)
    logger.info(
        "tag_search_complete",
        extra={"tags": query_tags, "results": len(candidates)},
    )
    return ResultSet.from_candidates(candidates)
