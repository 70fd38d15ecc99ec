from __future__ import annotations

from functools import lru_cache

from tabsearch.app.settings import settings
from tabsearch.llm.models import LanguageModel, build_language_model
from tabsearch.llm.sessions import SessionPool
from tabsearch.search.history import SearchHistory
from tabsearch.search.lexical import LexicalScorer
from tabsearch.search.reconciler import ResultReconciler
from tabsearch.search.semantic import SemanticScorer
from tabsearch.search.service import SearchService, build_text_loader
from tabsearch.search.session import SessionStore
from tabsearch.store.kv import StoreScopes, build_store_scopes
from tabsearch.summaries.cache import SummaryCache
from tabsearch.summaries.provider import InMemoryDocumentProvider
from tabsearch.summaries.summarizer import LanguageModelSummarizer


@lru_cache
def get_provider() -> InMemoryDocumentProvider:
    return InMemoryDocumentProvider()


@lru_cache
def get_stores() -> StoreScopes:
    return build_store_scopes(settings.store_uri)


def build_model() -> LanguageModel:
    return build_language_model(
        settings.llm_provider,
        api_key_openai=settings.openai_api_key,
        api_key_gemini=settings.gemini_api_key,
        openai_base_url=settings.openai_base_url,
        openai_model=settings.openai_chat_model,
        gemini_model=settings.gemini_chat_model,
        ollama_base_url=settings.ollama_base_url,
        ollama_model=settings.ollama_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout,
    )


@lru_cache
def get_session_pool() -> SessionPool:
    return SessionPool(build_model())


@lru_cache
def get_service() -> SearchService:
    provider = get_provider()
    stores = get_stores()
    pool = get_session_pool()
    cache = SummaryCache(
        stores=stores,
        provider=provider,
        summarizer=LanguageModelSummarizer(pool),
        durable_ttl=settings.summary_ttl_seconds,
        session_ttl=settings.session_summary_ttl_seconds,
        batch_size=settings.summary_batch_size,
        text_max_chars=settings.text_max_chars,
    )
    reconciler = ResultReconciler(
        lexical=LexicalScorer(),
        semantic=SemanticScorer(pool),
        text_loader=build_text_loader(provider, settings.full_text_max_chars),
    )
    return SearchService(
        provider=provider,
        cache=cache,
        reconciler=reconciler,
        sessions=SessionStore(stores.session),
        history=SearchHistory(stores.durable, limit=settings.history_limit),
        pool=pool,
        mode=settings.search_mode,
        summarize_on_search=settings.summarize_on_search,
    )


def reset_service_cache() -> None:
    get_service.cache_clear()
    get_session_pool.cache_clear()
    get_stores.cache_clear()
    get_provider.cache_clear()
