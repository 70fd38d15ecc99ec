from __future__ import annotations

"""Mode dispatch and reconciliation of lexical and semantic results."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from tabsearch.search.context import (
    CONFIRMED,
    FINAL,
    PROGRESS,
    PROVISIONAL,
    REPLACED,
    CancellationToken,
    SearchContext,
    SearchProgress,
    describe_result,
    discard,
    pluralize,
)
from tabsearch.search.errors import SearchCancelled
from tabsearch.search.hashtags import parse_hashtag_query, perform_tag_search
from tabsearch.search.keywords import extract_keywords
from tabsearch.search.lexical import LexicalScorer, min_score
from tabsearch.search.semantic import SemanticScorer
from tabsearch.search.types import (
    Document,
    ResultSet,
    ResultSource,
    ScoredCandidate,
    SearchMode,
    SearchStatus,
)

logger = logging.getLogger(__name__)

TextLoader = Callable[[Document, CancellationToken], Awaitable[str]]


async def document_text(document: Document, token: CancellationToken) -> str:
    """Default loader: the text the document already carries."""
    return document.text


@dataclass
class SearchOutcome:
    """What a strategy returns to the caller.

    ``refinement`` is set only in hybrid mode when a provisional lexical set
    was returned; it resolves to the authoritative result set, or ``None``
    when the search was cancelled first.
    """
    status: SearchStatus
    mode: SearchMode
    result: ResultSet
    keywords: tuple[str, ...] = ()
    refinement: asyncio.Task[ResultSet | None] | None = None
    message: str = ""

    @property
    def refining(self) -> bool:
        return self.refinement is not None and not self.refinement.done()


def _status_for(result: ResultSet) -> SearchStatus:
    return SearchStatus.FOUND if len(result) else SearchStatus.EMPTY


class SearchStrategy:
    """One search mode; implementations publish through the context."""
    mode: SearchMode

    async def search(self, documents: Sequence[Document], context: SearchContext) -> SearchOutcome:
        raise NotImplementedError

    def _finish(
        self,
        context: SearchContext,
        result: ResultSet,
        keywords: Sequence[str] = (),
        message: str | None = None,
    ) -> SearchOutcome:
        text = message if message is not None else describe_result(result)
        context.publish(FINAL, result, message=text)
        return SearchOutcome(
            status=_status_for(result),
            mode=self.mode,
            result=result,
            keywords=tuple(keywords),
            message=text,
        )


class HashtagStrategy(SearchStrategy):
    mode = SearchMode.HASHTAG

    def __init__(self, tags: Sequence[str]) -> None:
        self.tags = tuple(tags)

    async def search(self, documents: Sequence[Document], context: SearchContext) -> SearchOutcome:
        context.token.raise_if_cancelled()
        result = perform_tag_search(documents, self.tags)
        return self._finish(context, result, self.tags)


class SemanticOnlyStrategy(SearchStrategy):
    """Semantic scorer alone; an empty answer stays empty."""
    mode = SearchMode.SEMANTIC_ONLY

    def __init__(self, semantic: SemanticScorer) -> None:
        self.semantic = semantic

    async def search(self, documents: Sequence[Document], context: SearchContext) -> SearchOutcome:
        keywords = extract_keywords(context.query)
        result = await self.semantic.score(documents, context.query, context.token, keywords)
        context.token.raise_if_cancelled()
        return self._finish(context, result, keywords)


class AggressiveStrategy(SearchStrategy):
    """Lexical scoring one document at a time with incremental publication.

    Title, tags and URL are checked first; page text is loaded only for
    documents still below the threshold.
    """
    mode = SearchMode.AGGRESSIVE

    def __init__(self, lexical: LexicalScorer, text_loader: TextLoader = document_text) -> None:
        self.lexical = lexical
        self.text_loader = text_loader

    async def search(self, documents: Sequence[Document], context: SearchContext) -> SearchOutcome:
        keywords = extract_keywords(context.query)
        threshold = min_score(len(keywords))
        total = len(documents)
        found: list[ScoredCandidate] = []

        for index, document in enumerate(documents, start=1):
            context.token.raise_if_cancelled()
            match = self.lexical.score_document(document, keywords, include_summary=False)
            if match.score < threshold:
                text = await context.token.guard(self.text_loader(document, context.token))
                if text:
                    match = self.lexical.score_document(document, keywords, full_text=text)
            if match.score >= threshold:
                found.append(self.lexical.to_candidate(document.id, match))
                found.sort(key=lambda candidate: candidate.score, reverse=True)
            progress = SearchProgress(searched=index, total=total, found=len(found))
            context.publish(
                PROGRESS,
                ResultSet.from_candidates(found),
                message=progress.message,
                progress=progress,
            )

        context.token.raise_if_cancelled()
        result = ResultSet.from_candidates(found)
        logger.info(
            "aggressive_search_complete",
            extra={"documents": total, "results": len(result), "min_score": threshold},
        )
        message = (
            f"Found {len(result)} {pluralize('tab', len(result))} "
            f"(searched all {total} tabs)."
        )
        return self._finish(context, result, keywords, message=message)


class HybridStrategy(SearchStrategy):
    """Lexical first, then semantic replaces the provisional set when it answers."""
    mode = SearchMode.HYBRID

    def __init__(self, lexical: LexicalScorer, semantic: SemanticScorer) -> None:
        self.lexical = lexical
        self.semantic = semantic

    async def search(self, documents: Sequence[Document], context: SearchContext) -> SearchOutcome:
        keywords = extract_keywords(context.query)
        semantic_task = asyncio.ensure_future(
            self.semantic.score(documents, context.query, context.token, keywords)
        )
        try:
            lexical = self.lexical.score(documents, keywords).relabel(ResultSource.LEXICAL)
            context.token.raise_if_cancelled()
        except BaseException:
            discard(semantic_task)
            raise

        if len(lexical):
            context.publish(PROVISIONAL, lexical)
            refinement = asyncio.ensure_future(self._refine(semantic_task, lexical, context))
            return SearchOutcome(
                status=SearchStatus.FOUND,
                mode=self.mode,
                result=lexical,
                keywords=tuple(keywords),
                refinement=refinement,
                message=describe_result(lexical),
            )

        result = await context.token.guard(semantic_task)
        return self._finish(context, result.relabel(ResultSource.SEMANTIC), keywords)

    async def _refine(
        self,
        semantic_task: asyncio.Future[ResultSet],
        provisional: ResultSet,
        context: SearchContext,
    ) -> ResultSet | None:
        try:
            semantic = await context.token.guard(semantic_task)
        except SearchCancelled:
            discard(semantic_task)
            context.cancel()
            return None

        if not len(semantic):
            logger.info("semantic_kept_provisional", extra={"results": len(provisional)})
            context.publish(CONFIRMED, provisional)
            return provisional

        replacement = semantic.relabel(ResultSource.SEMANTIC)
        if replacement.ids == provisional.ids:
            context.publish(CONFIRMED, replacement)
            return replacement

        dropped = [doc_id for doc_id in provisional.ids if doc_id not in replacement.reasons]
        logger.info(
            "semantic_replaced_provisional",
            extra={
                "provisional": len(provisional),
                "replacement": len(replacement),
                "dropped": len(dropped),
            },
        )
        context.publish(REPLACED, replacement)
        return replacement


class ResultReconciler:
    """Select the search mode once and run its strategy."""
    def __init__(
        self,
        lexical: LexicalScorer,
        semantic: SemanticScorer,
        text_loader: TextLoader = document_text,
    ) -> None:
        self.lexical = lexical
        self.semantic = semantic
        self.text_loader = text_loader

    def strategy_for(self, query: str, mode: SearchMode) -> SearchStrategy:
        """Hashtag queries take priority over the configured mode."""
        hashtag = parse_hashtag_query(query)
        if hashtag.is_hashtag_search or mode is SearchMode.HASHTAG:
            return HashtagStrategy(hashtag.tags)
        if mode is SearchMode.AGGRESSIVE:
            return AggressiveStrategy(self.lexical, self.text_loader)
        if mode is SearchMode.SEMANTIC_ONLY:
            return SemanticOnlyStrategy(self.semantic)
        return HybridStrategy(self.lexical, self.semantic)

    async def search(
        self,
        documents: Sequence[Document],
        context: SearchContext,
        mode: SearchMode = SearchMode.HYBRID,
    ) -> SearchOutcome:
        strategy = self.strategy_for(context.query, mode)
        context.mode = strategy.mode
        logger.info(
            "search_dispatched",
            extra={"mode": strategy.mode.value, "documents": len(documents)},
        )
        try:
            return await strategy.search(documents, context)
        except SearchCancelled:
            context.cancel()
            logger.info("search_cancelled", extra={"mode": strategy.mode.value})
            return SearchOutcome(
                status=SearchStatus.CANCELLED,
                mode=strategy.mode,
                result=ResultSet(),
                message="Search cancelled.",
            )
