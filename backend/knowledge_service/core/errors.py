"""
Error taxonomy for the ingestion pipeline.

Per-document errors (``DocumentError`` subclasses) are recovered by the
loader: the document is counted and skipped. ``FetchError`` is fatal to
whoever called the fetcher once the retry budget is spent. ``FatalError``
aborts a load and leaves the checkpoint in place for the next run.
"""

from typing import Optional


class IngestionError(Exception):
    """Base class for all pipeline errors."""


class FetchError(IngestionError):
    """A remote source could not be fetched within the retry budget."""

    def __init__(self, url: str, attempts: int, cause: Optional[BaseException] = None):
        self.url = url
        self.attempts = attempts
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to fetch {url} after {attempts} attempt(s){detail}")


class DocumentError(IngestionError):
    """A single document could not be processed."""


class ValidationError(DocumentError):
    """Document rejected by the document store schema."""


class StoreError(DocumentError):
    """Document store or vector index I/O failure."""


class EmbeddingError(DocumentError):
    """Embedding generation failed."""


class FatalError(IngestionError):
    """Unrecoverable failure; the run must be restarted."""
