from __future__ import annotations

"""Caller-side orchestration: one active search, persistence, and cache upkeep."""

import asyncio
import logging
from typing import Any, Awaitable

from tabsearch.llm.sessions import SessionPool
from tabsearch.search.context import FINAL, CancellationToken, SearchContext, SearchListener
from tabsearch.search.errors import SearchCancelled
from tabsearch.search.history import SearchHistory
from tabsearch.search.reconciler import ResultReconciler, SearchOutcome, TextLoader
from tabsearch.search.session import SessionStore
from tabsearch.search.types import (
    Document,
    DocumentId,
    ResultSet,
    SearchMode,
    SearchSession,
    SearchStatus,
)
from tabsearch.store.kv import KeyValueStoreError
from tabsearch.summaries.cache import RefreshProgress, SummaryCache
from tabsearch.summaries.provider import (
    DocumentChanges,
    DocumentProvider,
    filter_searchable,
    is_scriptable_url,
    read_text,
)

logger = logging.getLogger(__name__)

NO_DOCUMENTS_MESSAGE = "No open tabs found."
NO_MATCHES_MESSAGE = "No matching tabs found."


def build_text_loader(provider: DocumentProvider, max_chars: int) -> TextLoader:
    """Full-text loader for progressive scans; non-scriptable pages yield no text."""
    async def load(document: Document, token: CancellationToken) -> str:
        if not is_scriptable_url(document.url):
            return ""
        return await read_text(provider, document, max_chars, token)

    return load


class SearchService:
    """Owns the active SearchContext and everything persisted around it."""
    def __init__(
        self,
        *,
        provider: DocumentProvider,
        cache: SummaryCache,
        reconciler: ResultReconciler,
        sessions: SessionStore,
        history: SearchHistory,
        pool: SessionPool,
        mode: SearchMode = SearchMode.HYBRID,
        summarize_on_search: bool = False,
    ) -> None:
        self.provider = provider
        self.cache = cache
        self.reconciler = reconciler
        self.sessions = sessions
        self.history = history
        self.pool = pool
        self.mode = mode
        self.summarize_on_search = summarize_on_search
        self._active: SearchContext | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._refreshing = False

    @property
    def active(self) -> SearchContext | None:
        return self._active

    @property
    def semantic_available(self) -> bool | None:
        return self.pool.available

    async def search(
        self,
        query: str,
        listener: SearchListener | None = None,
        mode: SearchMode | None = None,
    ) -> SearchOutcome:
        """Cancel any in-flight search and run ``query``."""
        query = query.strip()
        selected = mode or self.mode
        self.cancel()
        context = SearchContext(query=query, listener=listener)
        self._active = context
        await self._persist("mark_searching", self.sessions.mark_searching(query))
        try:
            return await self._run(context, selected)
        except SearchCancelled:
            context.cancel()
            return SearchOutcome(
                status=SearchStatus.CANCELLED,
                mode=context.mode or selected,
                result=ResultSet(),
                message="Search cancelled.",
            )
        finally:
            if self._active is context:
                await self._persist("clear_searching", self.sessions.clear_searching())

    async def _run(self, context: SearchContext, mode: SearchMode) -> SearchOutcome:
        documents = await self.provider.list_documents()
        if not documents:
            return self._empty(context, mode, NO_DOCUMENTS_MESSAGE)
        searchable = filter_searchable(documents, context.query)
        if not searchable:
            return self._empty(context, mode, NO_MATCHES_MESSAGE)
        context.token.raise_if_cancelled()

        if self.summarize_on_search:
            summarized = await self.cache.build_or_get_summaries(searchable, context.token)
        else:
            summarized = await self.cache.get_existing_summaries(searchable)
        context.token.raise_if_cancelled()

        outcome = await self.reconciler.search(summarized, context, mode)
        if outcome.status is SearchStatus.CANCELLED:
            return outcome

        await self._persist("log_history", self.history.log(context.query, outcome.result.ids))
        if len(outcome.result):
            session = self.sessions.build(context.query, outcome.result)
            await self._persist("save_session", self.sessions.save(session))
        else:
            await self._persist("clear_session", self.sessions.clear())
        if outcome.refinement is not None:
            self._spawn(self._persist_refinement(outcome.refinement, context))
        logger.info(
            "search_complete",
            extra={
                "mode": outcome.mode.value,
                "status": outcome.status.value,
                "results": len(outcome.result),
                "refining": outcome.refining,
            },
        )
        return outcome

    def _empty(self, context: SearchContext, mode: SearchMode, message: str) -> SearchOutcome:
        context.mode = mode
        context.publish(FINAL, ResultSet(), message=message)
        return SearchOutcome(
            status=SearchStatus.EMPTY,
            mode=mode,
            result=ResultSet(),
            message=message,
        )

    def _spawn(self, coro) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _persist_refinement(
        self, refinement: asyncio.Task[ResultSet | None], context: SearchContext
    ) -> None:
        result = await refinement
        if result is None or context.cancelled:
            return
        await self._persist("replace_result", self.sessions.replace_result(context.query, result))

    async def _persist(self, action: str, operation: Awaitable[Any]) -> None:
        """Run a session or history write; a store failure does not fail the search."""
        try:
            await operation
        except KeyValueStoreError as exc:
            logger.warning("session_persist_failed", extra={"action": action, "detail": str(exc)})

    async def wait_for_refinements(self) -> None:
        """Wait until background refinements have been persisted."""
        while self._background:
            await asyncio.gather(*list(self._background))

    def cancel(self) -> bool:
        """Cancel the in-flight search, if any."""
        context = self._active
        if context is None or context.cancelled:
            return False
        if context.status is SearchStatus.RUNNING or self._has_pending_refinement():
            context.cancel()
            logger.info("search_cancel_requested", extra={"query": context.query})
            return True
        return False

    def _has_pending_refinement(self) -> bool:
        return any(not task.done() for task in self._background)

    async def end_search(self) -> None:
        """Cancel, then forget the persisted session; summaries are kept."""
        self.cancel()
        self._active = None
        await self.sessions.clear()
        await self.sessions.clear_searching()

    async def session(self) -> SearchSession | None:
        return await self.sessions.load()

    async def apply_changes(self, changes: DocumentChanges) -> None:
        """Invalidate caches for navigated or closed documents."""
        stale = list(changes.closed) + list(changes.navigated)
        if stale:
            await self.cache.invalidate(stale)
        for doc_id in changes.closed:
            await self.sessions.remove_document(doc_id)
            if self._active is not None and doc_id in self._active.result.ids:
                self._active.result = self._active.result.without(doc_id)

    async def document_closed(self, doc_id: DocumentId) -> None:
        await self.apply_changes(DocumentChanges(closed=(doc_id,)))

    async def document_navigated(self, doc_id: DocumentId) -> None:
        await self.apply_changes(DocumentChanges(navigated=(doc_id,)))

    async def restore(self, listener: SearchListener | None = None) -> SearchSession | None:
        """Resume an interrupted search, then return the persisted session."""
        marker = await self.sessions.searching()
        idle = self._active is None or self._active.status is not SearchStatus.RUNNING
        if marker and marker.get("query") and idle:
            logger.info("search_resumed", extra={"query": marker["query"]})
            await self.search(str(marker["query"]), listener)
        return await self.sessions.load()

    async def refresh_summaries(self) -> RefreshProgress | None:
        """Background summarization; skipped while a search is running."""
        if self._refreshing or await self.sessions.searching():
            logger.info("summaries_refresh_skipped")
            return None
        self._refreshing = True
        try:
            return await self.cache.refresh()
        finally:
            self._refreshing = False

    async def check_availability(self) -> bool:
        return await self.pool.check_availability()

    async def aclose(self) -> None:
        self.cancel()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.pool.clear()
