from __future__ import annotations

"""Document Summary Cache over the session and durable stores.

Entries are keyed by document id and remember the URL they were built for;
an entry is reused only while the URL matches and it is younger than the
scope's staleness window. Writes are last-write-wins without locking.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

from tabsearch.search.context import CancellationToken
from tabsearch.search.errors import SearchCancelled, SearchError
from tabsearch.search.types import Document, DocumentId
from tabsearch.store.kv import KeyValueStore, StoreScopes
from tabsearch.summaries.provider import DocumentProvider, is_scriptable_url, read_text
from tabsearch.summaries.summarizer import (
    DocumentSummary,
    Summarizer,
    fallback_summary,
    generate_fallback_tags,
)

logger = logging.getLogger(__name__)

SUMMARIES_KEY = "tab_summaries"
DURABLE_TTL_SECONDS = 24 * 60 * 60
SESSION_TTL_SECONDS = 5 * 60
DEFAULT_BATCH_SIZE = 10
DEFAULT_TEXT_MAX_CHARS = 4000


@dataclass(frozen=True)
class CachedSummary:
    """Stored summary for one document."""
    url: str
    summary: str
    tags: tuple[str, ...] = ()
    timestamp: float = 0.0

    def is_fresh(self, url: str, now: float, ttl: float) -> bool:
        return bool(self.summary) and self.url == url and (now - self.timestamp) < ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "summary": self.summary,
            "tags": list(self.tags),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedSummary:
        return cls(
            url=str(data.get("url") or ""),
            summary=str(data.get("summary") or ""),
            tags=tuple(data.get("tags") or ()),
            timestamp=float(data.get("timestamp") or 0.0),
        )


@dataclass(frozen=True)
class RefreshProgress:
    processed: int
    total: int

    @property
    def message(self) -> str:
        return f"Read {self.processed} out of {self.total} tabs"


ProgressCallback = Callable[[RefreshProgress], None]


def _key(doc_id: DocumentId) -> str:
    return str(doc_id)


def fallback_document(document: Document) -> Document:
    """Attach the title/URL summary and heuristic tags."""
    return document.with_summary(
        fallback_summary(document.title, document.url),
        generate_fallback_tags(document.title, document.url),
    )


@dataclass
class SummaryCache:
    """Supplies each document's summary and tags to the scorers."""
    stores: StoreScopes
    provider: DocumentProvider
    summarizer: Summarizer
    durable_ttl: float = DURABLE_TTL_SECONDS
    session_ttl: float = SESSION_TTL_SECONDS
    batch_size: int = DEFAULT_BATCH_SIZE
    text_max_chars: int = DEFAULT_TEXT_MAX_CHARS
    clock: Callable[[], float] = field(default=time.time)

    async def _load(self, store: KeyValueStore) -> dict[str, CachedSummary]:
        raw = await store.get_one(SUMMARIES_KEY, {}) or {}
        return {key: CachedSummary.from_dict(value) for key, value in raw.items()}

    async def _save(self, store: KeyValueStore, entries: dict[str, CachedSummary]) -> None:
        await store.set({SUMMARIES_KEY: {key: value.to_dict() for key, value in entries.items()}})

    async def entries(self) -> dict[str, CachedSummary]:
        """Return the durable entries keyed by document id string."""
        return await self._load(self.stores.durable)

    async def get_existing_summaries(self, documents: Sequence[Document]) -> list[Document]:
        """Attach fresh durable summaries; use the deterministic fallback otherwise."""
        cached = await self._load(self.stores.durable)
        now = self.clock()
        results: list[Document] = []
        hits = 0
        for document in documents:
            entry = cached.get(_key(document.id))
            if entry is not None and entry.is_fresh(document.url, now, self.durable_ttl):
                hits += 1
                results.append(document.with_summary(entry.summary, entry.tags))
            else:
                results.append(fallback_document(document))
        logger.debug(
            "summaries_loaded",
            extra={"documents": len(results), "cache_hits": hits},
        )
        return results

    async def build_or_get_summaries(
        self,
        documents: Sequence[Document],
        token: CancellationToken | None = None,
    ) -> list[Document]:
        """Reuse session summaries and summarize the rest in one batch."""
        store = self.stores.session
        cached = await self._load(store)
        now = self.clock()
        resolved: dict[DocumentId, Document] = {}
        pending: list[Document] = []
        for document in documents:
            entry = cached.get(_key(document.id))
            if entry is not None and entry.is_fresh(document.url, now, self.session_ttl):
                resolved[document.id] = document.with_summary(entry.summary, entry.tags)
            elif not is_scriptable_url(document.url):
                resolved[document.id] = fallback_document(document)
            else:
                pending.append(document)

        if pending:
            summaries = await self._summarize_batch(pending, token)
            for summary in summaries:
                cached[_key(summary.id)] = CachedSummary(
                    url=summary.url,
                    summary=summary.summary,
                    tags=summary.tags,
                    timestamp=now,
                )
            await self._save(store, cached)
            by_id = {summary.id: summary for summary in summaries}
            for document in pending:
                summary = by_id.get(document.id)
                if summary is None:
                    resolved[document.id] = fallback_document(document)
                else:
                    resolved[document.id] = document.with_summary(summary.summary, summary.tags)
        logger.info(
            "summaries_built",
            extra={"documents": len(documents), "summarized": len(pending)},
        )
        return [resolved[document.id] for document in documents]

    async def _summarize_batch(
        self,
        batch: Sequence[Document],
        token: CancellationToken | None,
    ) -> list[DocumentSummary]:
        """Extract text and summarize; a failing batch gets fallback summaries."""
        try:
            texts = await asyncio.gather(
                *(read_text(self.provider, document, self.text_max_chars, token) for document in batch)
            )
            if token is not None:
                token.raise_if_cancelled()
            return await self.summarizer.summarize(list(zip(batch, texts)), token)
        except SearchCancelled:
            raise
        except SearchError as exc:
            logger.warning(
                "summary_batch_failed",
                extra={"batch_size": len(batch), "detail": str(exc)},
            )
            return [
                DocumentSummary(
                    id=document.id,
                    title=document.title,
                    url=document.url,
                    summary=fallback_summary(document.title, document.url),
                    tags=tuple(generate_fallback_tags(document.title, document.url)),
                )
                for document in batch
            ]

    async def prune(self, open_ids: Iterable[DocumentId]) -> int:
        """Drop durable entries for closed documents and stale entries."""
        cached = await self._load(self.stores.durable)
        now = self.clock()
        open_keys = {_key(doc_id) for doc_id in open_ids}
        kept = {
            key: entry
            for key, entry in cached.items()
            if key in open_keys and (now - entry.timestamp) < self.durable_ttl
        }
        removed = len(cached) - len(kept)
        if removed:
            await self._save(self.stores.durable, kept)
            logger.info("summaries_pruned", extra={"removed": removed})
        return removed

    async def invalidate(self, doc_ids: Iterable[DocumentId]) -> None:
        """Drop cached entries for documents that closed or navigated."""
        keys = {_key(doc_id) for doc_id in doc_ids}
        if not keys:
            return
        for store in (self.stores.durable, self.stores.session):
            cached = await self._load(store)
            remaining = {key: value for key, value in cached.items() if key not in keys}
            if len(remaining) != len(cached):
                await self._save(store, remaining)
        logger.debug("summaries_invalidated", extra={"doc_ids": sorted(keys)})

    async def refresh(
        self,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> RefreshProgress:
        """Summarize every scriptable document whose durable entry is unusable."""
        documents = await self.provider.list_documents()
        await self.prune(document.id for document in documents)
        cached = await self._load(self.stores.durable)
        now = self.clock()

        scriptable = [document for document in documents if is_scriptable_url(document.url)]
        pending = [
            document
            for document in scriptable
            if not (
                _key(document.id) in cached
                and cached[_key(document.id)].is_fresh(document.url, now, self.durable_ttl)
            )
        ]
        already = len(scriptable) - len(pending)
        total = len(scriptable)

        for start in range(0, len(pending), self.batch_size):
            if token is not None:
                token.raise_if_cancelled()
            batch = pending[start : start + self.batch_size]
            summaries = await self._summarize_batch(batch, token)
            stamp = self.clock()
            for summary in summaries:
                cached[_key(summary.id)] = CachedSummary(
                    url=summary.url,
                    summary=summary.summary,
                    tags=summary.tags,
                    timestamp=stamp,
                )
            await self._save(self.stores.durable, cached)
            progress = RefreshProgress(processed=already + start + len(batch), total=total)
            logger.info(
                "summaries_refresh_batch",
                extra={"processed": progress.processed, "total": progress.total},
            )
            if on_progress is not None:
                on_progress(progress)

        progress = RefreshProgress(processed=total, total=total)
        logger.info(
            "summaries_refreshed",
            extra={"summarized": len(pending), "total": total},
        )
        return progress
