from __future__ import annotations

"""Per-search context: cancellation token, listener, and published state."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from tabsearch.search.errors import SearchCancelled
from tabsearch.search.types import ResultSet, ResultSource, SearchMode, SearchStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROVISIONAL = "provisional"
REPLACED = "replaced"
CONFIRMED = "confirmed"
PROGRESS = "progress"
FINAL = "final"
CANCELLED = "cancelled"


def _consume_outcome(future: asyncio.Future[Any]) -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.debug("discarded_task_error", extra={"detail": type(future.exception()).__name__})


def discard(awaitable: Awaitable[Any]) -> None:
    """Drop an awaitable nobody will await, consuming any outcome it produces."""
    if asyncio.iscoroutine(awaitable):
        awaitable.close()
        return
    future = asyncio.ensure_future(awaitable)
    if future.done():
        _consume_outcome(future)
        return
    future.cancel()
    future.add_done_callback(_consume_outcome)


class CancellationToken:
    """Cooperative cancellation flag checked at every suspension point."""
    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SearchCancelled("search cancelled")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        When the token fires first the inner task is cancelled and
        ``SearchCancelled`` is raised.
        """
        if self._event.is_set():
            discard(awaitable)
            raise SearchCancelled("search cancelled")
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug("cancelled_task_error", extra={"detail": type(exc).__name__})
        raise SearchCancelled("search cancelled")


@dataclass(frozen=True)
class SearchProgress:
    """Progress of a progressive scan."""
    searched: int
    total: int
    found: int

    @property
    def message(self) -> str:
        return f"Searched {self.searched}/{self.total} tabs | Found {self.found} matches"


@dataclass(frozen=True)
class SearchUpdate:
    """Event delivered to a search listener."""
    kind: str
    status: SearchStatus
    result: ResultSet
    message: str = ""
    progress: SearchProgress | None = None


SearchListener = Callable[[SearchUpdate], None]


def pluralize(word: str, count: int) -> str:
    return word if count == 1 else f"{word}s"


def describe_result(result: ResultSet) -> str:
    """Return a human-readable status line for a result set."""
    total = len(result)
    if not total:
        return "No matching tabs found."
    counts = result.count_by_source()
    semantic = counts[ResultSource.SEMANTIC]
    lexical = counts[ResultSource.LEXICAL]
    if semantic and lexical:
        return (
            f"Found {total} {pluralize('tab', total)} "
            f"({semantic} semantic, {lexical} lexical)."
        )
    return f"Found {total} {pluralize('tab', total)}."


@dataclass
class SearchContext:
    """State owned by the caller for one search invocation."""
    query: str
    listener: SearchListener | None = None
    token: CancellationToken = field(default_factory=CancellationToken)
    mode: SearchMode | None = None
    status: SearchStatus = SearchStatus.RUNNING
    result: ResultSet = field(default_factory=ResultSet)
    progress: SearchProgress | None = None

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def cancel(self) -> None:
        """Cancel the search and deliver a single ``cancelled`` update."""
        already = self.status is SearchStatus.CANCELLED
        self.token.cancel()
        if already:
            return
        self.status = SearchStatus.CANCELLED
        message = "Search cancelled."
        if self.progress is not None:
            message = (
                f"Search cancelled. Found {self.progress.found} "
                f"{pluralize('tab', self.progress.found)} "
                f"(searched {self.progress.searched}/{self.progress.total})."
            )
        self._deliver(
            SearchUpdate(
                kind=CANCELLED,
                status=self.status,
                result=ResultSet(),
                message=message,
                progress=self.progress,
            )
        )

    def publish(
        self,
        kind: str,
        result: ResultSet,
        *,
        message: str | None = None,
        progress: SearchProgress | None = None,
    ) -> bool:
        """Record ``result`` and notify the listener unless cancelled."""
        if self.token.cancelled:
            return False
        self.result = result
        if progress is not None:
            self.progress = progress
        if kind != PROGRESS:
            self.status = SearchStatus.FOUND if len(result) else SearchStatus.EMPTY
        text = message if message is not None else describe_result(result)
        self._deliver(
            SearchUpdate(
                kind=kind,
                status=self.status,
                result=result,
                message=text,
                progress=progress,
            )
        )
        return True

    def _deliver(self, update: SearchUpdate) -> None:
        if self.listener is None:
            return
        try:
            self.listener(update)
        except Exception:
            logger.exception("search_listener_failed", extra={"kind": update.kind})
