from __future__ import annotations

"""FastAPI application entrypoint for the tab search service."""

import logging
import time
import uuid

from fastapi import FastAPI, HTTPException, Request

from tabsearch.app.dependencies import get_provider, get_service
from tabsearch.app.metrics import (
    count_replacements,
    metrics_middleware,
    metrics_response,
    record_search,
)
from tabsearch.app.schemas import (
    CancelResponse,
    DocumentsRequest,
    DocumentsResponse,
    HealthResponse,
    HistoryDeleteRequest,
    HistoryDeleteResponse,
    HistoryEntryOut,
    HistoryResponse,
    RefreshResponse,
    SearchRequest,
    SearchResponse,
    SessionResponse,
)
from tabsearch.app.settings import settings
from tabsearch.search.history import HistoryEntry
from tabsearch.search.types import Document, DocumentId, ResultSet, SearchMode

logger = logging.getLogger(__name__)

app = FastAPI(title="Tab Search", version="0.1.0")


def _configure_logging() -> None:
    """Configure root logging using environment settings."""
    level_name = settings.log_level.strip().upper()
    level = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
    logger.setLevel(level)


_configure_logging()


def _result_maps(result: ResultSet) -> tuple[dict[str, str], dict[str, float], dict[str, str]]:
    """String-keyed reasons, scores and sources for JSON responses."""
    data = result.to_dict()
    return data["reasons"], data["scores"], data["sources"]


def _resolve_document_id(raw: str) -> DocumentId | None:
    """Match a path parameter against known ids, which may be ints."""
    provider = get_provider()
    if raw in provider.documents:
        return raw
    try:
        numeric = int(raw)
    except ValueError:
        return None
    if numeric in provider.documents:
        return numeric
    return None


def _history_out(entries: list[HistoryEntry]) -> list[HistoryEntryOut]:
    return [HistoryEntryOut(query=item.query, ids=list(item.ids), at=item.at) for item in entries]


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Attach or create a request ID for traceability."""
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    """Capture request metrics before returning the response."""
    return await metrics_middleware(request, call_next)


@app.get("/metrics")
async def metrics():
    """Expose Prometheus-style metrics."""
    return metrics_response()


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check; also reports whether semantic scoring is available."""
    service = get_service()
    available = service.semantic_available
    if available is None:
        available = await service.check_availability()
    return HealthResponse(status="ok", semantic_available=available)


@app.put("/documents", response_model=DocumentsResponse)
async def replace_documents(request: DocumentsRequest) -> DocumentsResponse:
    """Replace the open-document set; missing ids count as closed."""
    provider = get_provider()
    service = get_service()
    documents = [
        Document(id=item.id, title=item.title, url=item.url, text=item.text)
        for item in request.documents
    ]
    changes = provider.replace(documents)
    await service.apply_changes(changes)
    logger.info(
        "documents_replaced",
        extra={
            "documents": len(documents),
            "closed": len(changes.closed),
            "navigated": len(changes.navigated),
        },
    )
    return DocumentsResponse(
        documents=len(documents),
        closed=list(changes.closed),
        navigated=list(changes.navigated),
    )


@app.delete("/documents/{doc_id}", response_model=DocumentsResponse)
async def close_document(doc_id: str) -> DocumentsResponse:
    """Close one document and drop it from the cache and the active session."""
    resolved = _resolve_document_id(doc_id)
    if resolved is None:
        raise HTTPException(status_code=404, detail="Document not found")
    provider = get_provider()
    provider.remove(resolved)
    await get_service().document_closed(resolved)
    return DocumentsResponse(documents=len(provider.documents), closed=[resolved])


@app.post("/search", response_model=SearchResponse)
async def search(request: SearchRequest) -> SearchResponse:
    """Run a search; the semantic pass may still be refining the returned set."""
    service = get_service()
    mode = SearchMode(request.mode) if request.mode else None
    start = time.monotonic()
    outcome = await service.search(request.query, listener=count_replacements, mode=mode)
    record_search(outcome.mode.value, outcome.status.value, time.monotonic() - start)
    reasons, scores, sources = _result_maps(outcome.result)
    return SearchResponse(
        status=outcome.status.value,
        query=request.query.strip(),
        mode=outcome.mode.value,
        ids=list(outcome.result.ids),
        reasons=reasons,
        scores=scores,
        sources=sources,
        refining=outcome.refining,
        message=outcome.message,
    )


@app.post("/search/cancel", response_model=CancelResponse)
async def cancel_search() -> CancelResponse:
    """Cancel the in-flight search, if any."""
    return CancelResponse(cancelled=get_service().cancel())


@app.get("/session", response_model=SessionResponse)
async def get_session() -> SessionResponse:
    """Return the persisted session of the last successful search."""
    session = await get_service().session()
    if session is None:
        raise HTTPException(status_code=404, detail="No active search session")
    reasons, scores, sources = _result_maps(session.result)
    return SessionResponse(
        query=session.query,
        tab_ids=session.tab_ids,
        created_at=session.created_at,
        preserve_order=session.preserve_order,
        reasons=reasons,
        scores=scores,
        sources=sources,
    )


@app.delete("/session", response_model=CancelResponse)
async def end_session() -> CancelResponse:
    """End the search; cached summaries are kept."""
    service = get_service()
    cancelled = service.cancel()
    await service.end_search()
    return CancelResponse(cancelled=cancelled)


@app.get("/history", response_model=HistoryResponse)
async def history() -> HistoryResponse:
    """Today's searches plus every stored day, newest first."""
    store = get_service().history
    today = await store.entries()
    days = await store.all_entries()
    return HistoryResponse(
        today=_history_out(today),
        days={day: _history_out(entries) for day, entries in days.items()},
    )


@app.delete("/history", response_model=HistoryDeleteResponse)
async def remove_history(request: HistoryDeleteRequest) -> HistoryDeleteResponse:
    """Remove one query from a day's history (today by default)."""
    removed = await get_service().history.remove(request.query, request.day)
    if not removed:
        raise HTTPException(status_code=404, detail="History entry not found")
    return HistoryDeleteResponse(removed=True)


@app.post("/summaries/refresh", response_model=RefreshResponse)
async def refresh_summaries() -> RefreshResponse:
    """Summarize documents whose cached summaries are missing or stale."""
    progress = await get_service().refresh_summaries()
    if progress is None:
        return RefreshResponse(processed=0, total=0, skipped=True)
    return RefreshResponse(
        processed=progress.processed,
        total=progress.total,
        message=progress.message,
    )
