"""Error taxonomy for the Marketing Intelligence pipeline.

Every stage catches these at its smallest unit (one source, one article,
one upsert) and records them instead of aborting the batch.
"""

from __future__ import annotations


class IntelligenceError(Exception):
    """Base class for all pipeline errors."""


class SourceFetchError(IntelligenceError):
    """Raised when an outbound fetch fails after all retry attempts."""

    def __init__(self, url: str, attempts: int, reason: str) -> None:
        """Initialize the fetch error.

        Args:
            url: The URL that could not be fetched
            attempts: How many attempts were made
            reason: Message of the last failure
        """
        self.url = url
        self.attempts = attempts
        self.reason = reason
        super().__init__(reason)


class ParseError(IntelligenceError):
    """Raised when a feed, sitemap or article page cannot be parsed."""


class DistillationError(IntelligenceError):
    """Raised when model output cannot be turned into knowledge."""


class EmbeddingError(IntelligenceError):
    """Raised when the embedding provider fails."""


class StorageError(IntelligenceError):
    """Raised when a vector store read or write fails."""


class ConfigError(IntelligenceError):
    """Raised when credentials or settings required by a subsystem are missing."""
