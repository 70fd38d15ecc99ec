from __future__ import annotations

import asyncio
import gc
from typing import Any, Iterable, Mapping

import pytest

from tabsearch.llm.models import NullLanguageModel
from tabsearch.llm.sessions import SessionPool
from tabsearch.search.context import CANCELLED, FINAL, PROVISIONAL, SearchUpdate
from tabsearch.search.history import SearchHistory
from tabsearch.search.lexical import LexicalScorer
from tabsearch.search.reconciler import ResultReconciler
from tabsearch.search.semantic import SemanticScorer
from tabsearch.search.service import SearchService, build_text_loader
from tabsearch.search.session import SessionStore
from tabsearch.search.types import Document, ResultSource, SearchMode, SearchStatus
from tabsearch.store.kv import InMemoryKeyValueStore, KeyValueStoreError, StoreScopes
from tabsearch.summaries.cache import CachedSummary, SummaryCache
from tabsearch.summaries.provider import DocumentChanges, InMemoryDocumentProvider
from tabsearch.tests.fakes import (
    CountingSummarizer,
    ScriptedLanguageModel,
    loop_errors,
    semantic_reply,
)

pytestmark = pytest.mark.anyio

PYTHON_DOCS = [
    Document(id=1, title="Python basics", url="https://example.com/basics"),
    Document(id=2, title="Python advanced", url="https://example.com/advanced"),
    Document(id=3, title="Snake care", url="https://pets.example.com/"),
]


class BrokenStore(InMemoryKeyValueStore):
    """Store whose every write fails."""
    async def set(self, values: Mapping[str, Any]) -> None:
        raise KeyValueStoreError("database is locked")

    async def remove(self, keys: Iterable[str]) -> None:
        raise KeyValueStoreError("database is locked")


def build_service(documents, model=None, summarizer=None, **kwargs) -> SearchService:
    provider = InMemoryDocumentProvider({document.id: document for document in documents})
    stores = StoreScopes(session=InMemoryKeyValueStore(), durable=InMemoryKeyValueStore())
    pool = SessionPool(model or NullLanguageModel())
    cache = SummaryCache(
        stores=stores,
        provider=provider,
        summarizer=summarizer or CountingSummarizer(),
    )
    reconciler = ResultReconciler(
        lexical=LexicalScorer(),
        semantic=SemanticScorer(pool),
        text_loader=build_text_loader(provider, 1000),
    )
    return SearchService(
        provider=provider,
        cache=cache,
        reconciler=reconciler,
        sessions=SessionStore(stores.session),
        history=SearchHistory(stores.durable),
        pool=pool,
        **kwargs,
    )


async def test_search_without_documents() -> None:
    updates: list[SearchUpdate] = []
    service = build_service([])

    outcome = await service.search("python", updates.append)

    assert outcome.status is SearchStatus.EMPTY
    assert outcome.message == "No open tabs found."
    assert [update.kind for update in updates] == [FINAL]


async def test_internal_pages_are_not_searched() -> None:
    service = build_service([Document(id=1, title="Python settings", url="chrome://settings")])

    outcome = await service.search("python")

    assert outcome.status is SearchStatus.EMPTY
    assert outcome.message == "No matching tabs found."


async def test_hybrid_search_persists_session_and_history() -> None:
    service = build_service(PYTHON_DOCS)

    outcome = await service.search("  python  ")
    await service.wait_for_refinements()

    assert outcome.result.ids == (1, 2)
    session = await service.session()
    assert session.query == "python"
    assert session.tab_ids == [1, 2]
    assert await service.sessions.searching() is None
    [entry] = await service.history.entries()
    assert entry.query == "python"
    assert entry.ids == (1, 2)


async def test_semantic_replacement_is_persisted() -> None:
    model = ScriptedLanguageModel(
        semantic_reply(
            ("doc2", 9, "Keywords: 'python' in title: 'Python advanced'"),
            ("doc3", 8, "Snake care guide covers pythons kept as pets in the home environment"),
        )
    )
    service = build_service(PYTHON_DOCS, model=model)

    outcome = await service.search("python")
    await service.wait_for_refinements()

    assert outcome.result.ids == (1, 2)
    session = await service.session()
    assert session.tab_ids == [2, 3]
    assert session.result.sources[3] is ResultSource.SEMANTIC
    assert service.active.result.ids == (2, 3)


async def test_cancel_during_refinement_keeps_provisional_session() -> None:
    model = ScriptedLanguageModel(semantic_reply(("doc3", 8, "Snake care guide covers pythons kept as pets")))
    model.gate = asyncio.Event()
    updates: list[SearchUpdate] = []
    service = build_service(PYTHON_DOCS, model=model)

    outcome = await service.search("python", updates.append)
    await asyncio.wait_for(model.entered.wait(), timeout=1)

    assert outcome.refining is True
    assert service.cancel() is True
    assert service.cancel() is False
    model.gate.set()
    await service.wait_for_refinements()

    assert [update.kind for update in updates] == [PROVISIONAL, CANCELLED]
    assert (await service.session()).tab_ids == [1, 2]


async def test_cancel_without_active_search() -> None:
    service = build_service(PYTHON_DOCS)
    assert service.cancel() is False


async def test_aggressive_mode_reads_page_text() -> None:
    documents = [
        Document(id=1, title="Kubernetes guide", url="https://example.com/k8s"),
        Document(id=2, title="Cooking", url="https://example.com/cook", text="Running kubernetes at home"),
        Document(id=3, title="Kubernetes settings", url="chrome://settings"),
    ]
    service = build_service(documents, mode=SearchMode.AGGRESSIVE)

    outcome = await service.search("kubernetes")

    assert outcome.mode is SearchMode.AGGRESSIVE
    assert outcome.result.ids == (1, 2)
    assert outcome.message == "Found 2 tabs (searched all 2 tabs)."


async def test_document_closed_updates_session() -> None:
    service = build_service(PYTHON_DOCS)
    await service.search("python")
    await service.wait_for_refinements()

    await service.document_closed(1)

    assert (await service.session()).tab_ids == [2, 3]
    assert len(model.prompts) == 1
    assert service.active.result.ids == (2,)


async def test_navigation_invalidates_cached_summary() -> None:
    service = build_service(PYTHON_DOCS)
    await service.cache.refresh()
    assert "2" in await service.cache.entries()

    await service.apply_changes(DocumentChanges(navigated=(2,)))

    assert "2" not in await service.cache.entries()
    assert "1" in await service.cache.entries()


async def test_restore_resumes_interrupted_search() -> None:
    service = build_service(PYTHON_DOCS)
    await service.sessions.mark_searching("python")

    session = await service.restore()
    await service.wait_for_refinements()

    assert session.query == "python"
    assert session.tab_ids == [1, 2]
    assert await service.sessions.searching() is None


async def test_end_search_clears_session_only() -> None:
    service = build_service(PYTHON_DOCS)
    await service.cache.refresh()
    await service.search("python")
    await service.wait_for_refinements()

    await service.end_search()

    assert await service.session() is None
    assert service.active is None
    assert len(await service.cache.entries()) == 3


async def test_refresh_skipped_while_searching() -> None:
    service = build_service(PYTHON_DOCS)
    await service.sessions.mark_searching("python")

    assert await service.refresh_summaries() is None

    await service.sessions.clear_searching()
    progress = await service.refresh_summaries()
    assert progress.processed == 3


async def test_search_uses_durable_summaries() -> None:
    service = build_service(PYTHON_DOCS)
    await service.cache.stores.durable.set(
        {
            "tab_summaries": {
                "3": CachedSummary(
                    url="https://pets.example.com/",
                    summary="Care for ball pythons",
                    tags=("python", "pets"),
                    timestamp=service.cache.clock(),
                ).to_dict()
            }
        }
    )

    outcome = await service.search("python")

    assert outcome.result.ids[0] == 3


async def test_summarize_on_search_builds_session_summaries() -> None:
    summarizer = CountingSummarizer()
    service = build_service(PYTHON_DOCS, summarizer=summarizer, summarize_on_search=True)

    await service.search("python")
    await service.search("python")
    await service.wait_for_refinements()

    assert len(summarizer.batches) == 1
    assert [document.id for document in summarizer.batches[0]] == [1, 2, 3]


async def test_back_to_back_searches_leave_no_stray_errors() -> None:
    model = ScriptedLanguageModel(
        semantic_reply(
            ("doc2", 9, "Keywords: 'python' in title: 'Python advanced'"),
            ("doc3", 8, "Snake care guide covers pythons kept as pets in the home environment"),
        )
    )
    service = build_service(PYTHON_DOCS, model=model)

    with loop_errors() as errors:
        first = await service.search("python")
        second = await service.search("python")
        await service.wait_for_refinements()
        await asyncio.sleep(0)
        del first, second
        gc.collect()

    assert errors == []
    assert (await service.session()).tab_ids == [2, 3]
    assert len(model.prompts) == 1


async def test_store_failures_do_not_abort_search() -> None:
    service = build_service(PYTHON_DOCS)
    service.sessions = SessionStore(BrokenStore())
    service.history = SearchHistory(BrokenStore())

    outcome = await service.search("python")
    await service.wait_for_refinements()

    assert outcome.status is SearchStatus.FOUND
    assert outcome.result.ids == (1, 2)
    assert service.active.result.ids == (1, 2)
