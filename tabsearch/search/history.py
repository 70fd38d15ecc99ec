from __future__ import annotations

"""Per-day search history in the durable store."""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Sequence

from tabsearch.search.types import DocumentId
from tabsearch.store.kv import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_KEY = "search_history_by_date"
DEFAULT_HISTORY_LIMIT = 5


def day_key(timestamp: float) -> str:
    """Local calendar day as ``YYYY-MM-DD``."""
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d")


@dataclass(frozen=True)
class HistoryEntry:
    query: str
    ids: tuple[DocumentId, ...]
    at: float

    def to_dict(self) -> dict[str, Any]:
        return {"query": self.query, "ids": list(self.ids), "at": self.at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        return cls(
            query=str(data.get("query", "")),
            ids=tuple(data.get("ids") or ()),
            at=float(data.get("at") or 0.0),
        )


@dataclass
class SearchHistory:
    """Most recent distinct queries per day, newest first."""
    store: KeyValueStore
    limit: int = DEFAULT_HISTORY_LIMIT
    clock: Callable[[], float] = field(default=time.time)

    async def _load(self) -> dict[str, list[dict[str, Any]]]:
        data = await self.store.get_one(HISTORY_KEY, {}) or {}
        return {key: list(value) for key, value in data.items() if isinstance(value, list)}

    async def log(self, query: str, ids: Sequence[DocumentId]) -> HistoryEntry:
        """Record a search, moving a repeated query to the front."""
        now = self.clock()
        entry = HistoryEntry(query=query, ids=tuple(ids), at=now)
        data = await self._load()
        key = day_key(now)
        items = [item for item in data.get(key, []) if item.get("query") != query]
        items.insert(0, entry.to_dict())
        data[key] = items[: self.limit]
        await self.store.set({HISTORY_KEY: data})
        logger.debug("history_logged", extra={"day": key, "query": query})
        return entry

    async def entries(self, day: str | None = None) -> list[HistoryEntry]:
        """Entries for ``day`` (default today), newest first."""
        data = await self._load()
        key = day or day_key(self.clock())
        return [HistoryEntry.from_dict(item) for item in data.get(key, [])[: self.limit]]

    async def all_entries(self) -> dict[str, list[HistoryEntry]]:
        """Every stored day, most recent day first."""
        data = await self._load()
        return {
            key: [HistoryEntry.from_dict(item) for item in data[key]]
            for key in sorted(data, reverse=True)
        }

    async def remove(self, query: str, day: str | None = None) -> bool:
        data = await self._load()
        key = day or day_key(self.clock())
        items = data.get(key, [])
        remaining = [item for item in items if item.get("query") != query]
        if len(remaining) == len(items):
            return False
        data[key] = remaining
        await self.store.set({HISTORY_KEY: data})
        logger.debug("history_removed", extra={"day": key, "query": query})
        return True
