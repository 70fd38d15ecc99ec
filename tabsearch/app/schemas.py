from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class DocumentIn(BaseModel):
    id: int | str
    title: str = ""
    url: str = ""
    text: str = ""


class DocumentsRequest(BaseModel):
    documents: list[DocumentIn]


class DocumentsResponse(BaseModel):
    documents: int
    closed: list[int | str] = Field(default_factory=list)
    navigated: list[int | str] = Field(default_factory=list)


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    mode: Literal["hashtag", "aggressive", "semantic_only", "hybrid"] | None = None


class SearchResponse(BaseModel):
    status: str
    query: str
    mode: str
    ids: list[int | str]
    reasons: dict[str, str] = Field(default_factory=dict)
    scores: dict[str, float] = Field(default_factory=dict)
    sources: dict[str, str] = Field(default_factory=dict)
    refining: bool = False
    message: str = ""


class CancelResponse(BaseModel):
    cancelled: bool


class SessionResponse(BaseModel):
    query: str
    tab_ids: list[int | str]
    created_at: float
    preserve_order: bool
    reasons: dict[str, str] = Field(default_factory=dict)
    scores: dict[str, float] = Field(default_factory=dict)
    sources: dict[str, str] = Field(default_factory=dict)


class HistoryEntryOut(BaseModel):
    query: str
    ids: list[int | str]
    at: float


class HistoryResponse(BaseModel):
    today: list[HistoryEntryOut]
    days: dict[str, list[HistoryEntryOut]]


class HistoryDeleteRequest(BaseModel):
    query: str = Field(min_length=1)
    day: str | None = None


class HistoryDeleteResponse(BaseModel):
    removed: bool


class RefreshResponse(BaseModel):
    processed: int
    total: int
    skipped: bool = False
    message: str = ""


class HealthResponse(BaseModel):
    status: str
    semantic_available: bool | None = None
