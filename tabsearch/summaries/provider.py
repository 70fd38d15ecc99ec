from __future__ import annotations

"""Document provider contract and URL rules for text extraction."""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Sequence
from urllib.parse import urlparse

from tabsearch.search.context import CancellationToken
from tabsearch.search.errors import ExtractionFailure
from tabsearch.search.types import Document, DocumentId

logger = logging.getLogger(__name__)

SCRIPTABLE_SCHEMES = {"http", "https"}
BLOCKED_HOSTS = {"chrome.google.com", "chromewebstore.google.com"}
INTERNAL_URL_PREFIX = "chrome://"


def is_scriptable_url(url: str | None) -> bool:
    """Return True when page text can be extracted from ``url``."""
    parsed = urlparse(url or "")
    if parsed.scheme not in SCRIPTABLE_SCHEMES:
        return False
    return (parsed.hostname or "") not in BLOCKED_HOSTS


def fallback_text(document: Document) -> str:
    return f"{document.title or ''} {document.url or ''}".strip()


def filter_searchable(documents: Iterable[Document], query: str) -> list[Document]:
    """Drop internal browser pages unless the query asks for them."""
    lowered = query.lower()
    if "extension" in lowered or INTERNAL_URL_PREFIX in lowered:
        return list(documents)
    return [
        document
        for document in documents
        if not (document.url or "").startswith(INTERNAL_URL_PREFIX)
    ]


@dataclass(frozen=True)
class DocumentChanges:
    """Ids affected by a provider update."""
    closed: tuple[DocumentId, ...] = ()
    navigated: tuple[DocumentId, ...] = ()


class DocumentProvider:
    """Source of open documents and their page text."""
    async def list_documents(self) -> list[Document]:
        raise NotImplementedError

    async def get_document_text(self, doc_id: DocumentId, max_chars: int) -> str:
        """Return extracted page text or raise ``ExtractionFailure``."""
        raise NotImplementedError


@dataclass
class InMemoryDocumentProvider(DocumentProvider):
    """Provider over documents pushed in by the caller."""
    documents: dict[DocumentId, Document] = field(default_factory=dict)

    async def list_documents(self) -> list[Document]:
        return list(self.documents.values())

    async def get_document_text(self, doc_id: DocumentId, max_chars: int) -> str:
        document = self.documents.get(doc_id)
        if document is None:
            raise ExtractionFailure(f"Unknown document: {doc_id}")
        if not is_scriptable_url(document.url):
            raise ExtractionFailure(f"Extraction unsupported for {document.url}")
        text = " ".join((document.text or "").split())
        return text[:max_chars]

    def get(self, doc_id: DocumentId) -> Document | None:
        return self.documents.get(doc_id)

    def replace(self, documents: Sequence[Document]) -> DocumentChanges:
        """Swap in a new open-document set and report what changed."""
        incoming = {document.id: document for document in documents}
        closed = tuple(doc_id for doc_id in self.documents if doc_id not in incoming)
        navigated = tuple(
            doc_id
            for doc_id, document in incoming.items()
            if doc_id in self.documents and self.documents[doc_id].url != document.url
        )
        self.documents = incoming
        return DocumentChanges(closed=closed, navigated=navigated)

    def upsert(self, document: Document) -> bool:
        """Add or update one document; return True when its URL changed."""
        previous = self.documents.get(document.id)
        self.documents[document.id] = document
        return previous is not None and previous.url != document.url

    def remove(self, doc_id: DocumentId) -> bool:
        return self.documents.pop(doc_id, None) is not None


async def read_text(
    provider: DocumentProvider,
    document: Document,
    max_chars: int,
    token: CancellationToken | None = None,
) -> str:
    """Return page text for ``document``, falling back to its title and URL."""
    if not is_scriptable_url(document.url):
        return fallback_text(document)
    try:
        if token is not None:
            text = await token.guard(provider.get_document_text(document.id, max_chars))
        else:
            text = await provider.get_document_text(document.id, max_chars)
    except ExtractionFailure as exc:
        logger.debug(
            "text_extraction_fallback",
            extra={"doc_id": document.id, "detail": str(exc)},
        )
        return fallback_text(document)
    return text.strip() or fallback_text(document)
