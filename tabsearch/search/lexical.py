from __future__ import annotations

"""Deterministic field-weighted keyword scoring."""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence
from urllib.parse import urlparse

from tabsearch.search.types import (
    Document,
    DocumentId,
    MatchField,
    ResultSet,
    ResultSource,
    ScoredCandidate,
)

logger = logging.getLogger(__name__)

DEFAULT_FIELD_WEIGHTS: dict[MatchField, int] = {
    MatchField.TITLE: 5,
    MatchField.TAGS: 7,
    MatchField.SUMMARY: 3,
    MatchField.CONTENT: 4,
    MatchField.URL: 1,
}
MIN_TERM_LENGTH = 3
MIN_STEM_LENGTH = 3

_STEM_RE = re.compile(r"(?:ing|ed|s|es|ship|ships)$", re.IGNORECASE)
_URL_SEPARATOR_RE = re.compile(r"[/\-_]")


def naive_stem(term: str) -> str:
    """Strip one common English suffix."""
    return _STEM_RE.sub("", term, count=1)


def normalize_url(url: str) -> str:
    """Return ``hostname-without-www path-with-separators-as-spaces``."""
    parsed = urlparse(url or "")
    if not parsed.scheme:
        return (url or "").lower()
    host = (parsed.hostname or "").replace("www.", "", 1)
    path = _URL_SEPARATOR_RE.sub(" ", parsed.path)
    return f"{host} {path}".lower()


def min_score(term_count: int) -> int:
    """Minimum score a document needs to qualify for ``term_count`` terms."""
    return max(term_count * 2, 4)


def contains_term(text: str, term: str, stem: str) -> bool:
    if not text:
        return False
    return term in text or (len(stem) >= MIN_STEM_LENGTH and stem in text)


def build_reason(terms: Sequence[str], fields: Sequence[MatchField]) -> str:
    """Format ``Matched "a", "b" in title, tags``."""
    reason = "Matched "
    if terms:
        reason += '"' + '", "'.join(terms) + '" in '
    return reason + ", ".join(item.value for item in fields)


@dataclass(frozen=True)
class LexicalMatch:
    """Accumulated score and evidence for one document."""
    score: int = 0
    matched_fields: tuple[MatchField, ...] = ()
    matched_terms: tuple[str, ...] = ()

    @property
    def reason(self) -> str:
        return build_reason(self.matched_terms, self.matched_fields)


@dataclass
class LexicalScorer:
    """Score documents by weighted term hits across their fields."""
    weights: Mapping[MatchField, int] = field(
        default_factory=lambda: dict(DEFAULT_FIELD_WEIGHTS)
    )

    def document_fields(
        self,
        document: Document,
        *,
        include_summary: bool = True,
        full_text: str | None = None,
    ) -> dict[MatchField, str]:
        """Build the lowercase searchable text of each field.

        Passing ``full_text`` switches to full-text mode: page content is
        searched instead of the summary.
        """
        fields = {MatchField.TITLE: (document.title or "").lower()}
        fields[MatchField.TAGS] = " ".join(tag.lower() for tag in document.tags)
        if full_text is not None:
            fields[MatchField.CONTENT] = full_text.lower()
        elif include_summary:
            fields[MatchField.SUMMARY] = (document.summary or "").lower()
        fields[MatchField.URL] = normalize_url(document.url)
        return fields

    def match_fields(self, fields: Mapping[MatchField, str], terms: Iterable[str]) -> LexicalMatch:
        score = 0
        matched_fields: list[MatchField] = []
        matched_terms: list[str] = []
        for term in terms:
            if len(term) < MIN_TERM_LENGTH:
                continue
            stem = naive_stem(term)
            hit = False
            for match_field in DEFAULT_FIELD_WEIGHTS:
                text = fields.get(match_field)
                if text is None or not contains_term(text, term, stem):
                    continue
                hit = True
                score += self.weights.get(match_field, 0)
                if match_field not in matched_fields:
                    matched_fields.append(match_field)
            if hit and term not in matched_terms:
                matched_terms.append(term)
        return LexicalMatch(
            score=score,
            matched_fields=tuple(matched_fields),
            matched_terms=tuple(matched_terms),
        )

    def score_document(
        self,
        document: Document,
        terms: Sequence[str],
        *,
        include_summary: bool = True,
        full_text: str | None = None,
    ) -> LexicalMatch:
        fields = self.document_fields(
            document, include_summary=include_summary, full_text=full_text
        )
        return self.match_fields(fields, terms)

    def to_candidate(self, document_id: DocumentId, match: LexicalMatch) -> ScoredCandidate:
        return ScoredCandidate(
            id=document_id,
            score=match.score,
            reason=match.reason,
            source=ResultSource.LEXICAL,
            matched_fields=match.matched_fields,
            matched_terms=match.matched_terms,
        )

    def score(
        self,
        documents: Iterable[Document],
        terms: Sequence[str],
        full_text: Mapping[DocumentId, str] | None = None,
    ) -> ResultSet:
        """Score every document and keep those above the threshold, best first."""
        threshold = min_score(len(terms))
        candidates: list[ScoredCandidate] = []
        scored = 0
        for document in documents:
            scored += 1
            text = None
            if full_text is not None:
                text = full_text.get(document.id, "")
            match = self.score_document(document, terms, full_text=text)
            if match.score >= threshold:
                candidates.append(self.to_candidate(document.id, match))
        candidates.sort(key=lambda candidate: candidate.score, reverse=True)
        logger.info(
            "lexical_scored",
            extra={
                "terms": list(terms),
                "min_score": threshold,
                "documents": scored,
                "results": len(candidates),
            },
        )
        return ResultSet.from_candidates(candidates)
