from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from tabsearch.search.types import SearchMode

load_dotenv()

_TRUE_VALUES = {"1", "true", "yes"}


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class Settings:
    aggressive_raw: bool = _flag("TABSEARCH_AGGRESSIVE")
    semantic_only_raw: bool = _flag("TABSEARCH_SEMANTIC_ONLY")
    summarize_on_search: bool = _flag("TABSEARCH_SUMMARIZE_ON_SEARCH")
    llm_provider: str = os.getenv("TABSEARCH_LLM_PROVIDER", "ollama")
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.2")
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_chat_model: str | None = os.getenv("OPENAI_CHAT_MODEL")
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    gemini_chat_model: str | None = os.getenv("GEMINI_CHAT_MODEL")
    llm_temperature: float = float(os.getenv("TABSEARCH_LLM_TEMPERATURE", "0.0"))
    llm_max_tokens: int = int(os.getenv("TABSEARCH_LLM_MAX_TOKENS", "1024"))
    llm_timeout: float = float(os.getenv("TABSEARCH_LLM_TIMEOUT", "60"))
    summary_ttl_seconds: float = float(os.getenv("TABSEARCH_SUMMARY_TTL_SECONDS", "86400"))
    session_summary_ttl_seconds: float = float(
        os.getenv("TABSEARCH_SESSION_SUMMARY_TTL_SECONDS", "300")
    )
    summary_batch_size: int = int(os.getenv("TABSEARCH_SUMMARY_BATCH_SIZE", "10"))
    text_max_chars: int = int(os.getenv("TABSEARCH_TEXT_MAX_CHARS", "4000"))
    full_text_max_chars: int = int(os.getenv("TABSEARCH_FULL_TEXT_MAX_CHARS", "50000"))
    store_uri_raw: str | None = os.getenv("TABSEARCH_STORE_URI")
    history_limit: int = int(os.getenv("TABSEARCH_HISTORY_LIMIT", "5"))
    log_level: str = os.getenv("TABSEARCH_LOG_LEVEL", "INFO")
    metrics_enabled: bool = _flag("TABSEARCH_METRICS_ENABLED", "true")

    @property
    def aggressive(self) -> bool:
        return _flag("TABSEARCH_AGGRESSIVE", "true" if self.aggressive_raw else "false")

    @property
    def semantic_only(self) -> bool:
        return _flag("TABSEARCH_SEMANTIC_ONLY", "true" if self.semantic_only_raw else "false")

    @property
    def search_mode(self) -> SearchMode:
        """Configured mode; aggressive wins over semantic-only."""
        if self.aggressive:
            return SearchMode.AGGRESSIVE
        if self.semantic_only:
            return SearchMode.SEMANTIC_ONLY
        return SearchMode.HYBRID

    @property
    def store_uri(self) -> str | None:
        return os.getenv("TABSEARCH_STORE_URI", self.store_uri_raw or "") or None


settings = Settings()
