"""
Shared fixtures: in-memory stand-ins for MongoDB and the embedding model,
and a real QdrantVectorIndex on an in-process Qdrant.
"""

import hashlib

import pytest
from qdrant_client import QdrantClient

from ..core.errors import EmbeddingError, StoreError
from ..core.models import CanonicalDocument
from ..core.vector_index import QdrantVectorIndex
from ..data_ingestion.checkpoint import CheckpointStore


DIMENSION = 8


class FakeDocumentStore:
    """Dict-backed document store keyed by integer id."""

    def __init__(self):
        self.documents: dict[int, CanonicalDocument] = {}
        self.create_calls: list[int] = []
        self.deleted: list[int] = []
        self.fail_ids: set[int] = set()
        self.cleared = 0

    def ping(self):
        pass

    def create(self, doc_id, document):
        self.create_calls.append(doc_id)
        if doc_id in self.fail_ids:
            raise StoreError(f"write failed for {doc_id}")
        self.documents[doc_id] = document

    def delete(self, doc_id):
        self.deleted.append(doc_id)
        self.documents.pop(doc_id, None)

    def delete_all(self):
        removed = len(self.documents)
        self.documents.clear()
        self.cleared += 1
        return removed

    def count(self):
        return len(self.documents)


class FakeEmbedder:
    """Deterministic hash-based vectors; texts in fail_texts raise."""

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.calls: list[str] = []
        self.fail_texts: set[str] = set()

    def embed(self, text):
        self.calls.append(text)
        if text in self.fail_texts:
            raise EmbeddingError(f"model rejected {text!r}")
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(b + 1) / 256 for b in digest[:self.dimension]]


def make_documents(count: int, start: int = 1) -> list[CanonicalDocument]:
    """Valid hadith documents numbered from start."""
    return [
        CanonicalDocument(
            source_type="Hadith",
            reference=f"Sahih Bukhari {n}",
            english_text=f"Narrated hadith number {n} about prayer and charity",
            context="Hadith from Sahih Bukhari",
            tags=["Hadith", "Sahih Bukhari", "prayer", "zakat"],
            metadata={"hadith_number": n, "collection": "Sahih Bukhari"},
        )
        for n in range(start, start + count)
    ]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def document_store():
    return FakeDocumentStore()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def qdrant_client():
    client = QdrantClient(":memory:")
    yield client
    client.close()


@pytest.fixture
def vector_index(qdrant_client):
    return QdrantVectorIndex(qdrant_client, "test_knowledge")


@pytest.fixture
def checkpoint_store(tmp_path):
    return CheckpointStore(tmp_path / "load_progress.json")
