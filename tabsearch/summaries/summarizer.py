from __future__ import annotations

"""Document summarization with a deterministic fallback."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence
from urllib.parse import urlparse

from tabsearch.llm.parsing import LLMError, parse_json_response
from tabsearch.llm.sessions import SessionPool
from tabsearch.search.context import CancellationToken
from tabsearch.search.errors import SearchCancelled, SummarizationFailure
from tabsearch.search.types import Document, DocumentId

logger = logging.getLogger(__name__)

SUMMARY_SESSION_KEY = "summarize"
MAX_SUMMARY_CHARS = 500
MAX_TAGS = 30
MAX_FALLBACK_TAGS = 3
TRUNCATION_MARKER = "..."

SUMMARY_SYSTEM_PROMPT = (
    "You summarize web pages for a tab search index. Respond with valid JSON "
    'only: {"summary": "one sentence describing the page", "tags": ["tag1", ...]}. '
    "Escape quotes inside strings."
)

SUMMARY_PROMPT_TEMPLATE = """Analyze this page and provide a summary and {max_tags} tags in valid JSON format.
Title: {title}
URL: {url}
Text: {text}

Extract {max_tags} tags/keywords covering:
- Broad categories (e.g., "technology", "education", "entertainment")
- Medium categories (e.g., "web-development", "machine-learning", "productivity")
- Specific/niche tags (e.g., "react-hooks", "python-django", "css-flexbox")
- Topics mentioned (e.g., "tutorial", "documentation", "news", "blog")
- Technologies/tools (e.g., "javascript", "vscode", "github")

Respond with valid JSON only: {{"summary": "one sentence describing what this page is about", "tags": ["tag1", "tag2", ...]}}"""

_DOMAIN_TAG_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("github",), "development"),
    (("stackoverflow", "stackexchange"), "programming"),
    (("youtube", "vimeo"), "video"),
    (("linkedin", "twitter", "facebook"), "social"),
    (("amazon", "ebay", "shop"), "shopping"),
    (("gmail", "outlook", "mail"), "email"),
    (("docs.google", "office.com"), "documents"),
    (("calendar",), "calendar"),
    (("drive.google", "dropbox", "onedrive"), "storage"),
    (("news", "cnn", "bbc"), "news"),
)
_TOPIC_TAG_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("insurance",), "insurance"),
    (("finance", "bank"), "finance"),
    (("health", "medical"), "health"),
    (("education", "course"), "education"),
    (("job", "career"), "jobs"),
)
_TITLE_ONLY_TAG_RULES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("news",), "news"),
    (("shop", "buy"), "shopping"),
    (("video", "watch"), "video"),
    (("doc", "edit"), "documents"),
)


@dataclass(frozen=True)
class DocumentSummary:
    """Summarizer output for one document."""
    id: DocumentId
    title: str
    url: str
    summary: str
    tags: tuple[str, ...] = ()


def _apply_rules(
    text: str, rules: Sequence[tuple[tuple[str, ...], str]], *, first_only: bool = False
) -> list[str]:
    tags: list[str] = []
    for needles, tag in rules:
        if any(needle in text for needle in needles):
            tags.append(tag)
            if first_only:
                break
    return tags


def generate_fallback_tags(title: str | None, url: str | None) -> list[str]:
    """Heuristic tags from the URL domain, URL path, and title."""
    tags: list[str] = []
    parsed = urlparse(url or "")
    if parsed.scheme and parsed.hostname:
        domain = parsed.hostname.replace("www.", "", 1).lower()
        domain_tags = _apply_rules(domain, _DOMAIN_TAG_RULES, first_only=True)
        if domain_tags:
            tags.extend(domain_tags)
        else:
            parts = domain.split(".")
            if len(parts) > 1:
                tags.append(parts[0])
        tags.extend(_apply_rules(parsed.path.lower(), _TOPIC_TAG_RULES))
    if title:
        lowered = title.lower()
        tags.extend(_apply_rules(lowered, _TOPIC_TAG_RULES))
        tags.extend(_apply_rules(lowered, _TITLE_ONLY_TAG_RULES))
    return list(dict.fromkeys(tags))[:MAX_FALLBACK_TAGS]


def fallback_summary(title: str | None, url: str | None) -> str:
    return f"{title or ''} {url or ''}".strip() or (url or "")


def truncate_summary(text: str, limit: int = MAX_SUMMARY_CHARS) -> str:
    if len(text) > limit:
        return text[:limit] + TRUNCATION_MARKER
    return text


def fallback_document_summary(document: Document, text: str = "") -> DocumentSummary:
    """Deterministic summary used when no model output is available."""
    source = text or document.title or document.url or ""
    return DocumentSummary(
        id=document.id,
        title=document.title,
        url=document.url,
        summary=truncate_summary(source),
        tags=tuple(generate_fallback_tags(document.title, document.url)),
    )


class Summarizer:
    """Base class for batch summarizers."""
    async def summarize(
        self,
        batch: Sequence[tuple[Document, str]],
        token: CancellationToken | None = None,
    ) -> list[DocumentSummary]:
        """Summarize ``(document, text)`` pairs, preserving input order."""
        raise NotImplementedError


class FallbackSummarizer(Summarizer):
    """Summarizer that never calls a model."""
    async def summarize(
        self,
        batch: Sequence[tuple[Document, str]],
        token: CancellationToken | None = None,
    ) -> list[DocumentSummary]:
        return [fallback_document_summary(document, text) for document, text in batch]


class LanguageModelSummarizer(Summarizer):
    """Summarize each document of a batch concurrently with a language model."""
    def __init__(self, pool: SessionPool, max_tags: int = MAX_TAGS) -> None:
        self.pool = pool
        self.max_tags = max_tags

    async def summarize(
        self,
        batch: Sequence[tuple[Document, str]],
        token: CancellationToken | None = None,
    ) -> list[DocumentSummary]:
        if not batch:
            return []
        try:
            session = await self.pool.get(SUMMARY_SESSION_KEY, SUMMARY_SYSTEM_PROMPT)
            results = await asyncio.gather(
                *(self._summarize_one(session, document, text, token) for document, text in batch)
            )
        except SearchCancelled:
            raise
        except Exception as exc:
            raise SummarizationFailure(str(exc)) from exc
        logger.info("summaries_generated", extra={"count": len(results)})
        return list(results)

    async def _summarize_one(
        self,
        session,
        document: Document,
        text: str,
        token: CancellationToken | None,
    ) -> DocumentSummary:
        if session is None or not text:
            return fallback_document_summary(document, text)
        prompt = SUMMARY_PROMPT_TEMPLATE.format(
            max_tags=self.max_tags,
            title=document.title,
            url=document.url,
            text=text,
        )
        raw = await self.pool.model.prompt(session, prompt, None, token)
        if not raw or not raw.strip():
            return fallback_document_summary(document, text)

        summary = ""
        tags: list[str] = []
        try:
            parsed = parse_json_response(raw)
        except LLMError:
            logger.warning("summary_plain_text", extra={"doc_id": document.id})
            summary = truncate_summary(raw.strip())
        else:
            value = parsed.get("summary")
            if isinstance(value, str) and value.strip():
                summary = truncate_summary(value.strip())
                raw_tags = parsed.get("tags")
                if isinstance(raw_tags, list):
                    tags = [str(tag).strip() for tag in raw_tags if str(tag).strip()]
        if not summary:
            return fallback_document_summary(document, text)
        return DocumentSummary(
            id=document.id,
            title=document.title,
            url=document.url,
            summary=summary,
            tags=tuple(tags[: self.max_tags]),
        )
