"""
Error taxonomy for project resolution.

Every error carries a ``retryable`` flag so callers can decide between
degrading (serve stale data, drop to lexical search) and surfacing the
failure.
"""

from typing import Optional


class ProjectSearchError(Exception):
    """Base exception for the project search subsystem."""

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.original_error = original_error


class UpstreamUnavailableError(ProjectSearchError):
    """The upstream project catalog could not be fetched."""


class EmbeddingUnavailableError(ProjectSearchError):
    """Embedding provider is misconfigured, unauthorized, rate-limited or unreachable."""

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        original_error: Optional[Exception] = None,
        reason: str = "error"
    ):
        super().__init__(message, retryable, original_error)
        self.reason = reason


class CorruptPersistentStoreError(ProjectSearchError):
    """The vector store file could not be parsed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, retryable=False)
        self.path = path


class OversizedInputError(ProjectSearchError):
    """A single text exceeds the embedding batch token budget."""

    def __init__(self, message: str, tokens: int, limit: int):
        super().__init__(message, retryable=False)
        self.tokens = tokens
        self.limit = limit
