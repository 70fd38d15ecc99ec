from __future__ import annotations

"""Model-backed relevance scoring over anonymized document references."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from tabsearch.llm.parsing import LLMError, parse_json_response
from tabsearch.llm.sessions import SessionPool
from tabsearch.search.context import CancellationToken
from tabsearch.search.errors import SearchCancelled
from tabsearch.search.grounding import validate_candidates
from tabsearch.search.keywords import extract_keywords
from tabsearch.search.types import (
    Document,
    DocumentId,
    ResultSet,
    ResultSource,
    ScoredCandidate,
)

logger = logging.getLogger(__name__)

SELECTION_SESSION_KEY = "select_scored"
REF_PREFIX = "doc"

SYSTEM_PROMPT = """Tab relevance scorer. Find tabs matching ALL query keywords in context.

RULES:
1. ALL keywords must be found in the tab (missing one = exclude)
2. Check TAGS first - they show the page's true topic
3. Context matters: "X for Y" means X in the context of Y

FORMAT: "Keywords: 'X' in [location]: '[text]', 'Y' in [location]: '[text]'"

Score 6-10, return JSON: {"results": [{"ref": string, "relevanceScore": number, "reason": string}]}"""

RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "results": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "ref": {
                        "type": "string",
                        "description": "The document ref from the provided list (e.g. 'doc1')",
                    },
                    "relevanceScore": {
                        "type": "number",
                        "description": "Score from 1-10, only include if >= 6",
                    },
                    "reason": {
                        "type": "string",
                        "description": (
                            "MUST quote exact text from title/summary/tags/URL "
                            "containing query keywords"
                        ),
                    },
                },
                "required": ["ref", "relevanceScore", "reason"],
            },
        }
    },
    "required": ["results"],
}

_PROMPT_RULES = (
    "RULES:",
    "1. ALL keywords must match (missing one = exclude)",
    "2. Check TAGS first - they show true topic",
    '3. "X for Y" = need both X AND Y context',
    "4. Semantic match ONLY if same category (ice-cream IS food, NOT movies)",
    '5. No hedging ("but", "however", "might") = exclude tab',
    "6. Score: 10=perfect, 8=good semantic, 6=weak, 4-5=loose",
    "7. Include score >= 4",
    "",
    "FORMAT: \"Keywords: 'X' in title: '[exact text]', 'Y' in tags: 'tag1'\"",
)


@dataclass
class RefTable:
    """Bidirectional mapping between prompt refs and real document ids.

    Built fresh for every scoring call.
    """
    documents: dict[str, Document] = field(default_factory=dict)
    refs: dict[DocumentId, str] = field(default_factory=dict)

    @classmethod
    def build(cls, documents: Sequence[Document]) -> RefTable:
        table = cls()
        for index, document in enumerate(documents, start=1):
            if document.id in table.refs:
                continue
            ref = f"{REF_PREFIX}{index}"
            table.documents[ref] = document
            table.refs[document.id] = ref
        return table

    def resolve(self, ref: str) -> DocumentId | None:
        document = self.documents.get(ref)
        return document.id if document is not None else None

    def prompt_entries(self) -> list[dict[str, Any]]:
        """Document payloads keyed by ref; real ids are never included."""
        return [
            {
                "ref": ref,
                "title": document.title or "Untitled",
                "summary": document.summary or "No summary",
                "tags": list(document.tags),
                "url": document.url or "",
            }
            for ref, document in self.documents.items()
        ]


def build_selection_prompt(query: str, table: RefTable) -> str:
    lines = [f'Query: "{query}"', "", *_PROMPT_RULES, "", "Tabs:"]
    lines.append(json.dumps(table.prompt_entries(), indent=2, ensure_ascii=False))
    return "\n".join(lines)


class SemanticScorer:
    """Score documents with a language model and keep only grounded matches.

    Any failure other than cancellation yields an empty result set.
    """
    def __init__(self, pool: SessionPool) -> None:
        self.pool = pool

    async def score(
        self,
        documents: Sequence[Document],
        query: str,
        token: CancellationToken | None = None,
        keywords: Sequence[str] | None = None,
    ) -> ResultSet:
        try:
            return await self._score(documents, query, token, keywords)
        except SearchCancelled:
            raise
        except Exception:
            logger.exception("semantic_score_failed", extra={"documents": len(documents)})
            return ResultSet()

    async def _score(
        self,
        documents: Sequence[Document],
        query: str,
        token: CancellationToken | None,
        keywords: Sequence[str] | None,
    ) -> ResultSet:
        if not documents:
            return ResultSet()
        lookup = self.pool.get(SELECTION_SESSION_KEY, SYSTEM_PROMPT)
        session = await (lookup if token is None else token.guard(lookup))
        if session is None:
            logger.info("semantic_unavailable")
            return ResultSet()
        if token is not None:
            token.raise_if_cancelled()

        table = RefTable.build(documents)
        prompt = build_selection_prompt(query, table)
        raw = await self.pool.model.prompt(session, prompt, RESPONSE_SCHEMA, token)
        if token is not None:
            token.raise_if_cancelled()
        if raw is None:
            return ResultSet()

        try:
            payload = parse_json_response(raw)
        except LLMError as exc:
            logger.warning("semantic_response_unparseable", extra={"detail": str(exc)})
            return ResultSet()
        entries = payload.get("results")
        if not isinstance(entries, list):
            logger.warning("semantic_response_missing_results")
            return ResultSet()

        terms = list(keywords) if keywords is not None else extract_keywords(query)
        accepted = validate_candidates(entries, table.documents, terms)
        candidates = [
            ScoredCandidate(
                id=table.documents[item.ref].id,
                score=item.relevance_score,
                reason=item.reason,
                source=ResultSource.SEMANTIC,
            )
            for item in accepted
        ]
        result = ResultSet.from_candidates(candidates)
        logger.info(
            "semantic_scored",
            extra={"documents": len(documents), "results": len(result)},
        )
        return result
