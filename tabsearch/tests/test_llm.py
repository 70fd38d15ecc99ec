from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from tabsearch.llm.models import (
    NullLanguageModel,
    OllamaLanguageModel,
    OpenAILanguageModel,
    build_language_model,
)
from tabsearch.llm.parsing import LLMError, parse_json_response
from tabsearch.llm.sessions import SessionPool
from tabsearch.tests.fakes import ScriptedLanguageModel

pytestmark = pytest.mark.anyio


def ollama_transport(status_code: int = 200, models=("llama3.2:latest",)) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": name} for name in models]})
        if request.url.path == "/api/chat":
            if status_code != 200:
                return httpx.Response(status_code, json={"error": "boom"})
            payload = json.loads(request.content)
            reply = f"{payload['messages'][0]['content']} | {payload['messages'][1]['content']}"
            return httpx.Response(200, json={"message": {"role": "assistant", "content": reply}})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def build_ollama(transport: httpx.MockTransport) -> OllamaLanguageModel:
    return OllamaLanguageModel(
        base_url="http://ollama.test",
        model="llama3.2",
        temperature=0.0,
        max_tokens=64,
        timeout=5.0,
        transport=transport,
    )


def test_parse_json_response_variants() -> None:
    assert parse_json_response('{"a": 1}') == {"a": 1}
    assert parse_json_response('Sure:\n```json\n{"a": 2}\n```') == {"a": 2}
    assert parse_json_response('Result: {"a": 3} done') == {"a": 3}
    assert parse_json_response('{"results": [{"ref": "doc1"},') == {"results": [{"ref": "doc1"}]}


def test_parse_json_response_rejects_non_objects() -> None:
    with pytest.raises(LLMError):
        parse_json_response("[1, 2, 3]")
    with pytest.raises(LLMError):
        parse_json_response("no json here")


async def test_ollama_session_and_prompt() -> None:
    model = build_ollama(ollama_transport())

    session = await model.create_session("Be brief.")
    reply = await model.prompt(session, "hello")

    assert session is not None
    assert session.provider == "ollama"
    assert reply == "Be brief. | hello"


async def test_ollama_missing_model_is_unavailable() -> None:
    model = build_ollama(ollama_transport(models=("mistral:latest",)))
    assert await model.create_session("Be brief.") is None


async def test_ollama_http_error_returns_none() -> None:
    model = build_ollama(ollama_transport(status_code=500))

    session = await model.create_session("Be brief.")

    assert await model.prompt(session, "hello") is None


async def test_openai_without_key_is_unavailable() -> None:
    model = OpenAILanguageModel(
        api_key="",
        base_url="https://api.openai.com/v1",
        model="gpt-4o-mini",
        temperature=0.0,
        max_tokens=64,
        timeout=5.0,
    )
    assert await model.create_session("Be brief.") is None


async def test_openai_prompt_reads_first_choice() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer secret"
        return httpx.Response(200, json={"choices": [{"message": {"content": "hi"}}]})

    model = OpenAILanguageModel(
        api_key="secret",
        base_url="https://llm.test/v1",
        model="gpt-4o-mini",
        temperature=0.0,
        max_tokens=64,
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )

    session = await model.create_session("Be brief.")

    assert await model.prompt(session, "hello", {"type": "object"}) == "hi"


def test_build_language_model_defaults() -> None:
    common = dict(
        api_key_openai=None,
        api_key_gemini=None,
        openai_base_url="https://api.openai.com/v1/",
        openai_model=None,
        gemini_model=None,
        ollama_base_url="http://localhost:11434/",
        ollama_model="llama3.2",
        temperature=0.0,
        max_tokens=64,
        timeout=5.0,
    )
    assert isinstance(build_language_model("none", **common), NullLanguageModel)
    ollama = build_language_model("ollama", **common)
    assert isinstance(ollama, OllamaLanguageModel)
    assert ollama.base_url == "http://localhost:11434"
    assert build_language_model("OpenAI", **common).provider == "openai"


async def test_null_model_is_unavailable() -> None:
    pool = SessionPool(NullLanguageModel())
    assert await pool.check_availability() is False
    assert await pool.get("select_scored", "prompt") is None


async def test_session_pool_creates_one_session_per_key() -> None:
    model = ScriptedLanguageModel("ok")
    pool = SessionPool(model)

    sessions = await asyncio.gather(*(pool.get("summarize", "prompt") for _ in range(5)))
    other = await pool.get("select_scored", "other prompt")

    assert len({id(session) for session in sessions}) == 1
    assert other is not sessions[0]
    assert model.sessions_created == 2
    assert pool.available is True

    await pool.clear()
    await pool.get("summarize", "prompt")
    assert model.sessions_created == 3
