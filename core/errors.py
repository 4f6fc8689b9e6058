"""Error taxonomy shared by the indexing and query pipelines."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.models import IndexingReport


class RAGError(Exception):
    """Base class for pipeline errors. `retryable` drives FallbackPolicy."""

    retryable = False


class ConfigurationError(RAGError):
    """Required configuration is missing or invalid."""


class InvalidInput(RAGError):
    """Caller supplied empty or malformed text."""


class ProviderUnavailable(RAGError):
    """Embedding or generation provider unreachable, timed out or failing."""

    retryable = True


class StoreUnavailable(RAGError):
    """Vector store unreachable or timed out."""

    retryable = True


class RateLimited(RAGError):
    """Provider backpressure, with an optional retry-after hint in seconds."""

    retryable = True

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class CollectionNotFound(RAGError):
    """Query attempted against a collection that was never indexed."""


class DimensionMismatch(RAGError):
    """Vector length disagrees with the collection's declared dimension."""


class DeadlineExceeded(RAGError):
    """Caller-level time budget ran out before the call could be issued."""


class IndexingFailed(RAGError):
    """A reindex run did not complete. Carries the partial report."""

    def __init__(self, message: str, report: IndexingReport | None = None):
        super().__init__(message)
        self.report = report


# Shown to users when generation itself is unavailable.
FALLBACK_MESSAGE = (
    "I'm sorry, the course assistant is temporarily unavailable. "
    "Please try again in a moment, or browse the lessons directly."
)
