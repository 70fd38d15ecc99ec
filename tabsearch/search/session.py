from __future__ import annotations

"""Persistence of the active search session in the session-scoped store."""

import logging
import time
from typing import Any, Callable

from tabsearch.search.types import DocumentId, ResultSet, SearchSession
from tabsearch.store.kv import KeyValueStore

logger = logging.getLogger(__name__)

SESSION_KEY = "search_session"
SEARCHING_KEY = "is_searching"


class SessionStore:
    """Read and write the persisted SearchSession and the in-progress marker."""
    def __init__(self, store: KeyValueStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.clock = clock

    async def mark_searching(self, query: str) -> None:
        await self.store.set({SEARCHING_KEY: {"query": query, "timestamp": self.clock()}})

    async def clear_searching(self) -> None:
        await self.store.remove([SEARCHING_KEY])

    async def searching(self) -> dict[str, Any] | None:
        """Return the marker of a search that has not finished, if any."""
        return await self.store.get_one(SEARCHING_KEY)

    def build(self, query: str, result: ResultSet, preserve_order: bool = True) -> SearchSession:
        return SearchSession(
            query=query,
            result=result,
            created_at=self.clock(),
            preserve_order=preserve_order,
        )

    async def save(self, session: SearchSession) -> None:
        await self.store.set({SESSION_KEY: session.to_dict()})
        logger.debug(
            "session_saved",
            extra={"query": session.query, "results": len(session.result)},
        )

    async def load(self) -> SearchSession | None:
        data = await self.store.get_one(SESSION_KEY)
        if not data:
            return None
        return SearchSession.from_dict(data)

    async def clear(self) -> None:
        await self.store.remove([SESSION_KEY])

    async def replace_result(self, query: str, result: ResultSet) -> SearchSession | None:
        """Rewrite the stored result when it still belongs to ``query``."""
        session = await self.load()
        if session is None or session.query != query:
            return None
        session.result = result
        await self.save(session)
        return session

    async def remove_document(self, doc_id: DocumentId) -> SearchSession | None:
        """Drop one id from the stored session, keeping the order of the rest."""
        session = await self.load()
        if session is None or doc_id not in session.result.ids:
            return session
        session.result = session.result.without(doc_id)
        await self.save(session)
        logger.info(
            "session_document_removed",
            extra={"doc_id": doc_id, "remaining": len(session.result)},
        )
        return session
