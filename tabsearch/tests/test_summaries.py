from __future__ import annotations

import json

import pytest

from tabsearch.llm.sessions import SessionPool
from tabsearch.search.types import Document
from tabsearch.store.kv import InMemoryKeyValueStore, StoreScopes
from tabsearch.summaries.cache import (
    SUMMARIES_KEY,
    CachedSummary,
    RefreshProgress,
    SummaryCache,
)
from tabsearch.summaries.provider import InMemoryDocumentProvider, filter_searchable, is_scriptable_url
from tabsearch.summaries.summarizer import (
    LanguageModelSummarizer,
    generate_fallback_tags,
    truncate_summary,
)
from tabsearch.tests.fakes import CountingSummarizer, ScriptedLanguageModel

pytestmark = pytest.mark.anyio

NOW = 1_700_000_000.0


def build_cache(documents, summarizer=None, **kwargs) -> SummaryCache:
    provider = InMemoryDocumentProvider({document.id: document for document in documents})
    return SummaryCache(
        stores=StoreScopes(session=InMemoryKeyValueStore(), durable=InMemoryKeyValueStore()),
        provider=provider,
        summarizer=summarizer or CountingSummarizer(),
        clock=lambda: NOW,
        **kwargs,
    )


def page(doc_id: int, title: str = "", url: str = "", text: str = "page text") -> Document:
    return Document(id=doc_id, title=title or f"Page {doc_id}", url=url or f"https://example.com/{doc_id}", text=text)


async def seed(cache: SummaryCache, store, entries: dict[str, CachedSummary]) -> None:
    await store.set({SUMMARIES_KEY: {key: value.to_dict() for key, value in entries.items()}})


def test_scriptable_urls() -> None:
    assert is_scriptable_url("https://example.com/") is True
    assert is_scriptable_url("http://example.com/") is True
    assert is_scriptable_url("chrome://settings") is False
    assert is_scriptable_url("https://chromewebstore.google.com/detail/x") is False
    assert is_scriptable_url("") is False


def test_filter_searchable_hides_internal_pages() -> None:
    documents = [page(1), Document(id=2, title="Extensions", url="chrome://extensions")]
    assert [document.id for document in filter_searchable(documents, "python")] == [1]
    assert [document.id for document in filter_searchable(documents, "my extensions")] == [1, 2]


def test_fallback_tags_from_domain() -> None:
    assert generate_fallback_tags("My repo", "https://github.com/user/repo") == ["development"]


def test_fallback_tags_are_capped() -> None:
    tags = generate_fallback_tags(
        "Health insurance news", "https://www.example.com/insurance/quotes"
    )
    assert tags == ["example", "insurance", "health"]


def test_truncate_summary() -> None:
    assert truncate_summary("a" * 500) == "a" * 500
    assert truncate_summary("a" * 501) == "a" * 500 + "..."


async def test_model_summarizer_caps_tags() -> None:
    reply = json.dumps({"summary": "Sourdough guide", "tags": [f"tag{i}" for i in range(40)]})
    summarizer = LanguageModelSummarizer(SessionPool(ScriptedLanguageModel(reply)))

    [summary] = await summarizer.summarize([(page(1), "How to bake bread")])

    assert summary.summary == "Sourdough guide"
    assert len(summary.tags) == 30
    assert summary.tags[0] == "tag0"


async def test_model_summarizer_accepts_plain_text() -> None:
    summarizer = LanguageModelSummarizer(
        SessionPool(ScriptedLanguageModel("This page explains sourdough."))
    )

    [summary] = await summarizer.summarize([(page(1), "How to bake bread")])

    assert summary.summary == "This page explains sourdough."
    assert summary.tags == ()


async def test_model_summarizer_falls_back_without_model() -> None:
    model = ScriptedLanguageModel(available=False)
    summarizer = LanguageModelSummarizer(SessionPool(model))
    document = page(1, title="Bread", url="https://github.com/bread")

    [summary] = await summarizer.summarize([(document, "How to bake bread")])

    assert summary.summary == "How to bake bread"
    assert summary.tags == ("development",)
    assert model.prompts == []


async def test_model_summarizer_falls_back_on_failed_call() -> None:
    summarizer = LanguageModelSummarizer(SessionPool(ScriptedLanguageModel(None)))

    [failed] = await summarizer.summarize([(page(1, title="Bread"), "How to bake bread")])
    [empty] = await summarizer.summarize([(page(2, title="Bread"), "")])

    assert failed.summary == "How to bake bread"
    assert empty.summary == "Bread"


async def test_existing_summaries_respect_url_and_age() -> None:
    documents = [
        page(1, url="https://example.com/one"),
        page(2, url="https://example.com/moved"),
        page(3, url="https://example.com/three"),
    ]
    cache = build_cache(documents)
    await seed(
        cache,
        cache.stores.durable,
        {
            "1": CachedSummary("https://example.com/one", "Cached one", ("cached",), NOW - 60),
            "2": CachedSummary("https://example.com/two", "Cached two", ("cached",), NOW - 60),
            "3": CachedSummary("https://example.com/three", "Cached three", ("cached",), NOW - 25 * 3600),
        },
    )

    results = await cache.get_existing_summaries(documents)

    assert results[0].summary == "Cached one"
    assert results[0].tags == ("cached",)
    assert results[1].summary == "Page 2 https://example.com/moved"
    assert results[2].summary == "Page 3 https://example.com/three"


async def test_refresh_processes_in_batches() -> None:
    documents = [page(index) for index in range(1, 13)]
    documents.append(Document(id=99, title="Settings", url="chrome://settings"))
    summarizer = CountingSummarizer()
    cache = build_cache(documents, summarizer)
    seen: list[RefreshProgress] = []

    progress = await cache.refresh(on_progress=seen.append)

    assert [item.processed for item in seen] == [10, 12]
    assert seen[0].message == "Read 10 out of 12 tabs"
    assert progress == RefreshProgress(processed=12, total=12)
    assert [len(batch) for batch in summarizer.batches] == [10, 2]
    entries = await cache.entries()
    assert entries["1"].summary == "Summary of Page 1"
    assert "99" not in entries


async def test_refresh_skips_fresh_entries() -> None:
    documents = [page(1), page(2)]
    summarizer = CountingSummarizer()
    cache = build_cache(documents, summarizer)

    await cache.refresh()
    seen: list[RefreshProgress] = []
    progress = await cache.refresh(on_progress=seen.append)

    assert len(summarizer.batches) == 1
    assert seen == []
    assert progress.processed == 2


async def test_failed_batch_stores_fallback_summaries() -> None:
    cache = build_cache(
        [page(1, title="My repo", url="https://github.com/user/repo")],
        CountingSummarizer(fail=True),
    )

    await cache.refresh()

    entry = (await cache.entries())["1"]
    assert entry.summary == "My repo https://github.com/user/repo"
    assert entry.tags == ("development",)


async def test_failed_batch_keeps_fallback_tags_for_search() -> None:
    documents = [page(1, title="My repo", url="https://github.com/user/repo")]
    cache = build_cache(documents, CountingSummarizer(fail=True))

    [document] = await cache.build_or_get_summaries(documents)

    assert document.summary == "My repo https://github.com/user/repo"
    assert document.tags == ("development",)
    [entry] = (await cache.stores.session.get_one(SUMMARIES_KEY)).values()
    assert entry["tags"] == ["development"]


async def test_prune_drops_closed_and_stale_entries() -> None:
    cache = build_cache([])
    await seed(
        cache,
        cache.stores.durable,
        {
            "1": CachedSummary("https://example.com/1", "one", (), NOW),
            "2": CachedSummary("https://example.com/2", "two", (), NOW),
            "3": CachedSummary("https://example.com/3", "three", (), NOW - 2 * 86400),
        },
    )

    removed = await cache.prune([1, 3])

    assert removed == 2
    assert set(await cache.entries()) == {"1"}


async def test_invalidate_clears_both_scopes() -> None:
    cache = build_cache([])
    entry = CachedSummary("https://example.com/1", "one", (), NOW)
    for store in (cache.stores.durable, cache.stores.session):
        await seed(cache, store, {"1": entry, "2": entry})

    await cache.invalidate([1])

    for store in (cache.stores.durable, cache.stores.session):
        assert set(await store.get_one(SUMMARIES_KEY)) == {"2"}


async def test_build_or_get_reuses_session_summaries() -> None:
    documents = [
        page(1),
        Document(id=2, title="Settings", url="chrome://settings"),
        page(3),
    ]
    summarizer = CountingSummarizer()
    cache = build_cache(documents, summarizer)

    first = await cache.build_or_get_summaries(documents)
    second = await cache.build_or_get_summaries(documents)

    assert [document.id for document in first] == [1, 2, 3]
    assert first[0].summary == "Summary of Page 1"
    assert first[1].summary == "Settings chrome://settings"
    assert [[document.id for document in batch] for batch in summarizer.batches] == [[1, 3]]
    assert second == first
