from __future__ import annotations

"""Key-value stores backing session-scoped and durable search state."""

import asyncio
import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError


class KeyValueStoreError(RuntimeError):
    """Raised when a key-value store cannot read or write entries."""
    pass


class KeyValueStore:
    """Base class for async key-value stores with get/set/remove semantics."""
    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return the stored values for the keys that exist."""
        raise NotImplementedError

    async def set(self, values: Mapping[str, Any]) -> None:
        """Store every key/value pair in the mapping."""
        raise NotImplementedError

    async def remove(self, keys: Iterable[str]) -> None:
        """Delete the given keys; missing keys are ignored."""
        raise NotImplementedError

    async def get_one(self, key: str, default: Any = None) -> Any:
        """Return a single value or the default."""
        values = await self.get([key])
        return values.get(key, default)


@dataclass
class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store; values are copied on read and write."""
    entries: dict[str, Any] = field(default_factory=dict)

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return {
            key: copy.deepcopy(self.entries[key]) for key in keys if key in self.entries
        }

    async def set(self, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            self.entries[key] = copy.deepcopy(value)

    async def remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.entries.pop(key, None)

    def clear(self) -> None:
        self.entries.clear()


class SQLKeyValueStore(KeyValueStore):
    """Store JSON values in a SQL table."""
    def __init__(self, connection_uri: str) -> None:
        """Initialize the store and ensure the table exists."""
        self._engine = create_engine(connection_uri)
        self._metadata = MetaData()
        self._table = Table(
            "kv_entries",
            self._metadata,
            Column("key", String(255), primary_key=True),
            Column("value", Text, nullable=False),
            Column("updated_at", DateTime(timezone=True), nullable=False),
        )
        self._metadata.create_all(self._engine)

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        return await asyncio.to_thread(self._get, list(keys))

    async def set(self, values: Mapping[str, Any]) -> None:
        await asyncio.to_thread(self._set, dict(values))

    async def remove(self, keys: Iterable[str]) -> None:
        await asyncio.to_thread(self._remove, list(keys))

    def _get(self, keys: list[str]) -> dict[str, Any]:
        """Fetch and decode rows for the given keys."""
        if not keys:
            return {}
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(
                    self._table.select().where(self._table.c.key.in_(keys))
                ).fetchall()
        except SQLAlchemyError as exc:
            raise KeyValueStoreError(str(exc)) from exc
        return {row.key: json.loads(row.value) for row in rows}

    def _set(self, values: dict[str, Any]) -> None:
        """Replace rows for every key in a single transaction."""
        if not values:
            return
        updated_at = datetime.now(timezone.utc)
        rows = [
            {
                "key": key,
                "value": json.dumps(value, ensure_ascii=True, default=str),
                "updated_at": updated_at,
            }
            for key, value in values.items()
        ]
        try:
            with self._engine.begin() as conn:
                conn.execute(self._table.delete().where(self._table.c.key.in_(list(values))))
                conn.execute(self._table.insert(), rows)
        except SQLAlchemyError as exc:
            raise KeyValueStoreError(str(exc)) from exc

    def _remove(self, keys: list[str]) -> None:
        if not keys:
            return
        try:
            with self._engine.begin() as conn:
                conn.execute(self._table.delete().where(self._table.c.key.in_(keys)))
        except SQLAlchemyError as exc:
            raise KeyValueStoreError(str(exc)) from exc


@dataclass(frozen=True)
class StoreScopes:
    """Session-scoped and durable stores used by one search service."""
    session: KeyValueStore
    durable: KeyValueStore


def build_store_scopes(durable_uri: str | None) -> StoreScopes:
    """Build store scopes, using SQL for the durable scope when configured."""
    durable: KeyValueStore
    if durable_uri:
        durable = SQLKeyValueStore(durable_uri)
    else:
        durable = InMemoryKeyValueStore()
    return StoreScopes(session=InMemoryKeyValueStore(), durable=durable)
