"""Error taxonomy for ingestion and retrieval.

Ingestion-time errors (extraction, embedding) are terminal for the document
being processed. Query-time errors (store reads, citation correlation) are
caught by the chat path, which degrades to answering without context.
"""

from __future__ import annotations


class GroundingError(Exception):
    """Base class for all errors raised by the grounding core."""


class ExtractionError(GroundingError):
    """Text could not be extracted from an uploaded document."""

    def __init__(self, error: str, details: str | None = None) -> None:
        super().__init__(error if details is None else f"{error}: {details}")
        self.error = error
        self.details = details

    def to_dict(self) -> dict[str, str | None]:
        return {"error": self.error, "details": self.details}


class EmbeddingProviderError(GroundingError):
    """The embedding provider failed or returned an unusable response."""


class DimensionMismatchError(GroundingError, ValueError):
    """Two vectors that must share a dimensionality do not."""


class StoreUnavailable(GroundingError):
    """The chunk store could not be read."""


class CitationCorrelationFailure(GroundingError):
    """Re-running a tool call's search to validate its citations failed."""

    def __init__(self, tool_name: str, query: str | None, cause: BaseException | str) -> None:
        super().__init__(f"Correlation failed for {tool_name} ({query!r}): {cause}")
        self.tool_name = tool_name
        self.query = query


class ConcurrencyLimitExceeded(GroundingError):
    """A user already has too many files in flight."""

    def __init__(self, limit: int, requested: int) -> None:
        super().__init__(
            f"Too many concurrent uploads. Maximum {limit} files can be processed at once "
            f"(requested {requested})."
        )
        self.limit = limit
        self.requested = requested


class BatchValidationError(GroundingError):
    """A batch upload was rejected before any file was processed."""


class MessageExistsError(GroundingError):
    """A message id is already taken; stored citation maps are never rewritten."""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message {message_id} already exists")
        self.message_id = message_id


__all__ = [
    "GroundingError",
    "ExtractionError",
    "EmbeddingProviderError",
    "DimensionMismatchError",
    "StoreUnavailable",
    "CitationCorrelationFailure",
    "ConcurrencyLimitExceeded",
    "BatchValidationError",
    "MessageExistsError",
]
