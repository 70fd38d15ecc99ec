from __future__ import annotations

"""Core data types for documents, scored candidates, and result sets."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable

DocumentId = int | str


class ResultSource(str, Enum):
    """Which scorer produced a result."""
    LEXICAL = "lexical"
    SEMANTIC = "semantic"


class MatchField(str, Enum):
    """Document field a lexical term matched in."""
    TITLE = "title"
    TAGS = "tags"
    SUMMARY = "summary"
    CONTENT = "content"
    URL = "url"


class SearchMode(str, Enum):
    """Search strategy selected once per search."""
    HASHTAG = "hashtag"
    AGGRESSIVE = "aggressive"
    SEMANTIC_ONLY = "semantic_only"
    HYBRID = "hybrid"


class SearchStatus(str, Enum):
    """Lifecycle state of a search."""
    RUNNING = "running"
    FOUND = "found"
    EMPTY = "empty"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Document:
    """One searchable unit (an open tab) with its derived summary and tags."""
    id: DocumentId
    title: str = ""
    url: str = ""
    text: str = ""
    summary: str = ""
    tags: tuple[str, ...] = ()

    def with_summary(self, summary: str, tags: Iterable[str]) -> Document:
        """Return a copy carrying the given summary and tags."""
        return replace(self, summary=summary, tags=tuple(tags))


@dataclass(frozen=True)
class ScoredCandidate:
    """A document that passed a scorer, with evidence for the match."""
    id: DocumentId
    score: float
    reason: str
    source: ResultSource
    matched_fields: tuple[MatchField, ...] = ()
    matched_terms: tuple[str, ...] = ()


@dataclass
class ResultSet:
    """Ordered, unique document ids with per-id reasons, scores, and sources.

    The order of ``ids`` is the relevance rank and is never re-sorted by
    consumers.
    """
    ids: tuple[DocumentId, ...] = ()
    reasons: dict[DocumentId, str] = field(default_factory=dict)
    scores: dict[DocumentId, float] = field(default_factory=dict)
    sources: dict[DocumentId, ResultSource] = field(default_factory=dict)

    @classmethod
    def from_candidates(cls, candidates: Iterable[ScoredCandidate]) -> ResultSet:
        """Build a result set keeping the first occurrence of each id."""
        ids: list[DocumentId] = []
        reasons: dict[DocumentId, str] = {}
        scores: dict[DocumentId, float] = {}
        sources: dict[DocumentId, ResultSource] = {}
        for candidate in candidates:
            if candidate.id in reasons:
                continue
            ids.append(candidate.id)
            reasons[candidate.id] = candidate.reason
            scores[candidate.id] = candidate.score
            sources[candidate.id] = candidate.source
        return cls(ids=tuple(ids), reasons=reasons, scores=scores, sources=sources)

    def __len__(self) -> int:
        return len(self.ids)

    def relabel(self, source: ResultSource) -> ResultSet:
        """Return a copy with every id attributed to ``source``."""
        return ResultSet(
            ids=self.ids,
            reasons=dict(self.reasons),
            scores=dict(self.scores),
            sources={doc_id: source for doc_id in self.ids},
        )

    def without(self, doc_id: DocumentId) -> ResultSet:
        """Return a copy with one id removed, preserving the order of the rest."""
        return ResultSet(
            ids=tuple(item for item in self.ids if item != doc_id),
            reasons={key: value for key, value in self.reasons.items() if key != doc_id},
            scores={key: value for key, value in self.scores.items() if key != doc_id},
            sources={key: value for key, value in self.sources.items() if key != doc_id},
        )

    def count_by_source(self) -> dict[ResultSource, int]:
        counts = {source: 0 for source in ResultSource}
        for doc_id in self.ids:
            source = self.sources.get(doc_id)
            if source is not None:
                counts[source] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        """Serialize with string keys for JSON storage."""
        return {
            "ids": list(self.ids),
            "reasons": {str(key): value for key, value in self.reasons.items()},
            "scores": {str(key): value for key, value in self.scores.items()},
            "sources": {str(key): value.value for key, value in self.sources.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResultSet:
        ids = tuple(data.get("ids") or [])
        reasons = data.get("reasons") or {}
        scores = data.get("scores") or {}
        sources = data.get("sources") or {}
        return cls(
            ids=ids,
            reasons={doc_id: reasons[str(doc_id)] for doc_id in ids if str(doc_id) in reasons},
            scores={doc_id: scores[str(doc_id)] for doc_id in ids if str(doc_id) in scores},
            sources={
                doc_id: ResultSource(sources[str(doc_id)])
                for doc_id in ids
                if str(doc_id) in sources
            },
        )


@dataclass
class SearchSession:
    """Persisted state of one completed search."""
    query: str
    result: ResultSet
    created_at: float
    preserve_order: bool = True

    @property
    def tab_ids(self) -> list[DocumentId]:
        return list(self.result.ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "tabIds": self.tab_ids,
            "createdAt": self.created_at,
            "preserveOrder": self.preserve_order,
            "result": self.result.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchSession:
        result_data = dict(data.get("result") or {})
        result_data["ids"] = data.get("tabIds") or result_data.get("ids") or []
        return cls(
            query=str(data.get("query", "")),
            result=ResultSet.from_dict(result_data),
            created_at=float(data.get("createdAt", 0.0)),
            preserve_order=data.get("preserveOrder", True) is not False,
        )
