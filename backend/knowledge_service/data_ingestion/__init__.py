"""
Data Ingestion Module - Build the knowledge base from remote sources.

Handles:
- Fetching the Quran and hadith collections with retries
- Normalizing raw records into canonical documents
- Loading documents into MongoDB and Qdrant in checkpointed batches
"""

from .retry import RetryPolicy, linear_backoff
from .fetcher import RetryingFetcher, QuranSource, HadithSource, HADITH_COLLECTIONS, fetch_all
from .normalizer import SourceMetadata, normalize, extract_tags, build_corpus
from .checkpoint import Checkpoint, CheckpointStore, corpus_fingerprint
from .events import LoggingObserver, ProgressBarObserver
from .loader import ResumableLoader, LoaderState, LoadStats, read_corpus

__all__ = [
    "RetryPolicy",
    "linear_backoff",
    "RetryingFetcher",
    "QuranSource",
    "HadithSource",
    "HADITH_COLLECTIONS",
    "fetch_all",
    "SourceMetadata",
    "normalize",
    "extract_tags",
    "build_corpus",
    "Checkpoint",
    "CheckpointStore",
    "corpus_fingerprint",
    "LoggingObserver",
    "ProgressBarObserver",
    "ResumableLoader",
    "LoaderState",
    "LoadStats",
    "read_corpus",
]
