from __future__ import annotations

"""Validation of model-scored candidates against their source documents.

Every candidate returned by the language model passes, in order: structural
checks, a relevance floor, quote grounding, hedge detection, and keyword
coverage. A first pass uses strict thresholds; only when it accepts nothing
is a relaxed pass run over the same response.
"""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from tabsearch.search.errors import ValidationRejection
from tabsearch.search.types import Document

logger = logging.getLogger(__name__)

HEDGE_PHRASES = (
    "but context is",
    "however",
    "but it",
    "although",
    "not directly",
    "not exactly",
    "might be",
    "could be",
    "possibly",
    "perhaps",
    "may be related",
    "somewhat related",
    "loosely related",
    "tangentially",
    "indirectly",
    "not quite",
    "not really",
    "unclear",
    "unsure",
    "uncertain",
)
MIN_QUOTE_LENGTH = 5
DETAILED_REASON_LENGTH = 50

_QUOTE_RE = re.compile(r"'([^']+)'")


@dataclass(frozen=True)
class ValidationPass:
    """Thresholds for one validation pass."""
    name: str
    min_relevance: float
    min_keyword_coverage: float


STRICT_PASS = ValidationPass(name="strict", min_relevance=6, min_keyword_coverage=0.4)
RELAXED_PASS = ValidationPass(name="relaxed", min_relevance=4, min_keyword_coverage=0.3)


@dataclass(frozen=True)
class ValidatedCandidate:
    """Model candidate that survived validation."""
    ref: str
    relevance_score: float
    reason: str


def extract_quotes(reason: str) -> list[str]:
    """Return the single-quoted substrings of ``reason``, lowercased."""
    return [match.strip().lower() for match in _QUOTE_RE.findall(reason)]


def grounding_text(document: Document) -> str:
    """Text a quoted claim may be found in: title, summary, URL, tags."""
    parts = [
        document.title or "",
        document.summary or "",
        document.url or "",
        " ".join(document.tags),
    ]
    return "\n".join(part.lower() for part in parts)


def is_grounded(reason: str, document: Document) -> bool:
    """Check that at least one quoted substring occurs in the document.

    A reason with no quotes passes. Quotes shorter than five characters are
    not evidence; a reason quoting only such fragments fails.
    """
    quotes = extract_quotes(reason)
    if not quotes:
        return True
    haystack = grounding_text(document)
    return any(
        quote in haystack for quote in quotes if len(quote) >= MIN_QUOTE_LENGTH
    )


def find_hedge(reason: str) -> str | None:
    lowered = reason.lower()
    for phrase in HEDGE_PHRASES:
        if phrase in lowered:
            return phrase
    return None


def keyword_coverage(reason: str, keywords: Sequence[str]) -> float:
    """Fraction of ``keywords`` that appear verbatim in ``reason``."""
    if not keywords:
        return 1.0
    lowered = reason.lower()
    found = sum(1 for keyword in keywords if keyword.lower() in lowered)
    return found / len(keywords)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def validate_candidate(
    entry: Any,
    documents_by_ref: Mapping[str, Document],
    keywords: Sequence[str],
    validation_pass: ValidationPass,
) -> ValidatedCandidate:
    """Return the validated candidate or raise ``ValidationRejection``."""
    if not isinstance(entry, Mapping):
        raise ValidationRejection("?", "malformed")
    ref = entry.get("ref")
    score = entry.get("relevanceScore")
    reason = entry.get("reason")
    if not isinstance(ref, str) or not ref:
        raise ValidationRejection("?", "missing_ref")
    document = documents_by_ref.get(ref)
    if document is None:
        raise ValidationRejection(ref, "unknown_ref")
    if not _is_number(score):
        raise ValidationRejection(ref, "invalid_score")
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationRejection(ref, "missing_reason")
    if score < validation_pass.min_relevance:
        raise ValidationRejection(ref, "below_floor", f"score={score}")
    if not is_grounded(reason, document):
        raise ValidationRejection(ref, "ungrounded_quote", reason)
    hedge = find_hedge(reason)
    if hedge is not None:
        raise ValidationRejection(ref, "hedged", hedge)
    coverage = keyword_coverage(reason, keywords)
    if (
        coverage < validation_pass.min_keyword_coverage
        and len(reason) < DETAILED_REASON_LENGTH
    ):
        raise ValidationRejection(ref, "low_keyword_coverage", f"coverage={coverage:.2f}")
    return ValidatedCandidate(ref=ref, relevance_score=float(score), reason=reason)


def _run_pass(
    entries: Sequence[Any],
    documents_by_ref: Mapping[str, Document],
    keywords: Sequence[str],
    validation_pass: ValidationPass,
) -> list[ValidatedCandidate]:
    accepted: list[ValidatedCandidate] = []
    seen: set[str] = set()
    for entry in entries:
        try:
            candidate = validate_candidate(entry, documents_by_ref, keywords, validation_pass)
        except ValidationRejection as rejection:
            logger.debug(
                "semantic_candidate_rejected",
                extra={
                    "pass": validation_pass.name,
                    "ref": rejection.ref,
                    "reason_code": rejection.reason_code,
                    "detail": rejection.detail,
                },
            )
            continue
        if candidate.ref in seen:
            continue
        seen.add(candidate.ref)
        accepted.append(candidate)
    accepted.sort(key=lambda candidate: candidate.relevance_score, reverse=True)
    return accepted


def validate_candidates(
    entries: Iterable[Any],
    documents_by_ref: Mapping[str, Document],
    keywords: Sequence[str],
) -> list[ValidatedCandidate]:
    """Validate model output with progressive relaxation, best score first."""
    items = list(entries)
    accepted = _run_pass(items, documents_by_ref, keywords, STRICT_PASS)
    if not accepted:
        accepted = _run_pass(items, documents_by_ref, keywords, RELAXED_PASS)
        if accepted:
            logger.info("semantic_relaxed_pass", extra={"accepted": len(accepted)})
    logger.info(
        "semantic_validated",
        extra={"candidates": len(items), "accepted": len(accepted)},
    )
    return accepted
