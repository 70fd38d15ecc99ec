from __future__ import annotations

"""Error taxonomy for the ranking and selection core."""


class SearchError(RuntimeError):
    """Base class for search failures."""
    pass


class ExtractionFailure(SearchError):
    """Raised when document text cannot be extracted."""
    pass


class SummarizationFailure(SearchError):
    """Raised when a summarization batch fails."""
    pass


class ModelUnavailable(SearchError):
    """Raised when no language model capability is available."""
    pass


class ModelInvocationFailure(SearchError):
    """Raised when a language model call fails or returns an invalid payload."""
    pass


class ValidationRejection(SearchError):
    """Raised when a semantic candidate fails a validation check."""
    def __init__(self, ref: str, reason_code: str, detail: str = "") -> None:
        super().__init__(f"{ref}: {reason_code}")
        self.ref = ref
        self.reason_code = reason_code
        self.detail = detail


class SearchCancelled(SearchError):
    """Raised when a search is cancelled by its caller."""
    pass
