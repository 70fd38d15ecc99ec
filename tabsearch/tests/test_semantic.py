from __future__ import annotations

import asyncio

import pytest

from tabsearch.llm.sessions import SessionPool
from tabsearch.search.context import CancellationToken
from tabsearch.search.errors import SearchCancelled
from tabsearch.search.semantic import (
    SELECTION_SESSION_KEY,
    RefTable,
    SemanticScorer,
    build_selection_prompt,
)
from tabsearch.search.types import Document, ResultSource
from tabsearch.tests.fakes import ScriptedLanguageModel, semantic_reply

pytestmark = pytest.mark.anyio

DOCUMENTS = [
    Document(
        id=101,
        title="Ice cream recipes",
        url="https://example.com/ice-cream",
        summary="Dessert recipes",
        tags=("food", "dessert"),
    ),
    Document(
        id=202,
        title="Food for thought: essays",
        url="https://essays.example.org/",
        summary="Essays about writing",
        tags=("writing",),
    ),
]


def build_scorer(reply=None, available: bool = True) -> tuple[SemanticScorer, ScriptedLanguageModel]:
    model = ScriptedLanguageModel(reply=reply, available=available)
    return SemanticScorer(SessionPool(model)), model


def test_ref_table_maps_refs_to_ids() -> None:
    table = RefTable.build(DOCUMENTS)
    assert table.resolve("doc1") == 101
    assert table.resolve("doc2") == 202
    assert table.resolve("doc3") is None
    assert table.refs == {101: "doc1", 202: "doc2"}


def test_prompt_never_contains_real_ids() -> None:
    prompt = build_selection_prompt("food essays", RefTable.build(DOCUMENTS))
    assert '"ref": "doc1"' in prompt
    assert "101" not in prompt
    assert "202" not in prompt
    assert 'Query: "food essays"' in prompt


async def test_semantic_scorer_maps_refs_back() -> None:
    reply = semantic_reply(
        ("doc2", 9, "Keywords: 'food' in title: 'Food for thought: essays', 'essays' in summary"),
    )
    scorer, model = build_scorer(reply)

    result = await scorer.score(DOCUMENTS, "food essays", CancellationToken())

    assert result.ids == (202,)
    assert result.scores[202] == 9
    assert result.sources[202] is ResultSource.SEMANTIC
    assert "essays" in result.reasons[202]
    assert len(model.prompts) == 1


async def test_semantic_scorer_drops_invalid_candidates() -> None:
    reply = semantic_reply(
        ("doc1", 10, "Keywords: 'food' in title: 'Chocolate cake'"),
        ("doc2", 9, "Keywords: 'food' in title: 'Food for thought: essays', 'essays' too"),
        ("doc7", 9, "Keywords: 'food' in title: 'Food for thought: essays'"),
    )
    scorer, _ = build_scorer(reply)

    result = await scorer.score(DOCUMENTS, "food essays")

    assert result.ids == (202,)


async def test_semantic_scorer_unavailable_model_is_empty() -> None:
    scorer, model = build_scorer(available=False)

    result = await scorer.score(DOCUMENTS, "food")

    assert len(result) == 0
    assert scorer.pool.available is False
    assert model.prompts == []


async def test_semantic_scorer_failures_are_empty() -> None:
    failing, _ = build_scorer(reply=None)
    garbage, _ = build_scorer(reply="I cannot help with that")
    missing, _ = build_scorer(reply='{"answer": []}')

    assert len(await failing.score(DOCUMENTS, "food")) == 0
    assert len(await garbage.score(DOCUMENTS, "food")) == 0
    assert len(await missing.score(DOCUMENTS, "food")) == 0


async def test_semantic_scorer_parses_fenced_json() -> None:
    reply = "Here you go:\n```json\n" + semantic_reply(
        ("doc1", 8, "Keywords: 'food' in tags: 'dessert'"),
    ) + "\n```"
    scorer, _ = build_scorer(reply)

    result = await scorer.score(DOCUMENTS, "food")

    assert result.ids == (101,)


async def test_semantic_scorer_propagates_cancellation() -> None:
    scorer, model = build_scorer(semantic_reply())
    token = CancellationToken()
    token.cancel()

    with pytest.raises(SearchCancelled):
        await scorer.score(DOCUMENTS, "food", token)
    assert model.prompts == []


async def test_cancel_while_session_is_created() -> None:
    scorer, model = build_scorer(semantic_reply())
    model.check_gate = asyncio.Event()
    token = CancellationToken()

    scoring = asyncio.ensure_future(scorer.score(DOCUMENTS, "food", token))
    await asyncio.wait_for(model.checking.wait(), timeout=1)
    token.cancel()

    with pytest.raises(SearchCancelled):
        await asyncio.wait_for(scoring, timeout=1)
    assert model.prompts == []

    model.check_gate.set()
    assert await scorer.pool.get(SELECTION_SESSION_KEY, "prompt") is not None
    assert model.sessions_created == 1


async def test_semantic_session_is_reused() -> None:
    scorer, model = build_scorer(semantic_reply())

    await scorer.score(DOCUMENTS, "food")
    await scorer.score(DOCUMENTS, "essays")

    assert model.sessions_created == 1
    assert len(model.prompts) == 2
    assert SELECTION_SESSION_KEY in scorer.pool._sessions
