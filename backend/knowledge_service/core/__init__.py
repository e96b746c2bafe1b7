"""Core components: data model, collaborators and errors."""

from .models import CanonicalDocument, SourceType, has_valid_text, sanitize
from .embeddings import EmbeddingService
from .vector_index import QdrantVectorIndex, EmbeddingRecord, SearchHit, CollectionInfo
from .document_store import MongoDocumentStore, KnowledgeSource
from .errors import (
    IngestionError,
    FetchError,
    DocumentError,
    ValidationError,
    StoreError,
    EmbeddingError,
    FatalError,
)

__all__ = [
    "CanonicalDocument",
    "SourceType",
    "has_valid_text",
    "sanitize",
    "EmbeddingService",
    "QdrantVectorIndex",
    "EmbeddingRecord",
    "SearchHit",
    "CollectionInfo",
    "MongoDocumentStore",
    "KnowledgeSource",
    "IngestionError",
    "FetchError",
    "DocumentError",
    "ValidationError",
    "StoreError",
    "EmbeddingError",
    "FatalError",
]
