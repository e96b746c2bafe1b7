"""
Vector Index - Qdrant collection holding verse and hadith embeddings.

Points are keyed by positive integers (the document's position in the
valid-only corpus sequence), so upserting the same id twice overwrites.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence
from loguru import logger

from .errors import StoreError


@dataclass
class EmbeddingRecord:
    """A point ready for upsert."""

    id: int
    vector: list[float]
    payload: dict = field(default_factory=dict)


@dataclass
class SearchHit:
    """A single nearest-neighbour result."""

    id: int
    score: float
    payload: dict = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.payload.get("text", "")

    @property
    def source_type(self) -> Optional[str]:
        return self.payload.get("source_type")

    @property
    def reference(self) -> Optional[str]:
        return self.payload.get("reference")


@dataclass
class CollectionInfo:
    """Collection metadata used for post-load verification."""

    name: str
    points_count: int
    status: str


class QdrantVectorIndex:
    """
    Thin wrapper over a Qdrant collection.

    Supports:
    - Create / delete collection (delete is idempotent)
    - Upsert by integer id
    - Cosine similarity search with payloads
    """

    def __init__(self, client: Any, collection_name: str = "islamic_knowledge"):
        self._client = client
        self.collection_name = collection_name

    @classmethod
    def connect(
        cls,
        collection_name: str,
        url: Optional[str] = None,
        host: str = "localhost",
        port: int = 6333,
        api_key: Optional[str] = None,
        timeout: int = 60,
    ) -> "QdrantVectorIndex":
        """Open a Qdrant client and wrap the named collection."""
        from qdrant_client import QdrantClient

        try:
            if url:
                client = QdrantClient(url=url, api_key=api_key, timeout=timeout)
                logger.info(f"Connected to Qdrant at {url}")
            else:
                client = QdrantClient(
                    host=host,
                    port=port,
                    api_key=api_key,
                    https=False,  # Use HTTP for local Qdrant
                    prefer_grpc=False,  # Use REST API instead of gRPC
                    timeout=timeout,
                )
                logger.info(f"Connected to Qdrant at {host}:{port}")
        except Exception as e:
            raise StoreError(f"Failed to connect to Qdrant: {e}") from e

        return cls(client, collection_name)

    def exists(self) -> bool:
        try:
            return bool(self._client.collection_exists(self.collection_name))
        except Exception as e:
            raise StoreError(f"Failed to check collection {self.collection_name}: {e}") from e

    def create_collection(self, dimension: int, distance: str = "Cosine") -> None:
        """Create the collection if it doesn't exist."""
        from qdrant_client.models import Distance, VectorParams

        if self.exists():
            logger.info(f"Collection already exists: {self.collection_name}")
            return

        try:
            self._client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(
                    size=dimension,
                    distance=Distance(distance),
                ),
            )
        except Exception as e:
            raise StoreError(f"Failed to create collection {self.collection_name}: {e}") from e

        logger.info(f"Created collection: {self.collection_name} (size={dimension}, distance={distance})")

    def delete_collection(self) -> None:
        """Delete the collection; a missing collection is not an error."""
        if not self.exists():
            logger.debug(f"Collection {self.collection_name} absent, nothing to delete")
            return

        try:
            self._client.delete_collection(self.collection_name)
        except Exception as e:
            raise StoreError(f"Failed to delete collection {self.collection_name}: {e}") from e

        logger.warning(f"Deleted collection: {self.collection_name}")

    def upsert(self, records: Sequence[EmbeddingRecord]) -> None:
        """Upsert points; records with an existing id overwrite it."""
        if not records:
            return

        from qdrant_client.models import PointStruct

        points = [
            PointStruct(id=record.id, vector=record.vector, payload=record.payload)
            for record in records
        ]

        try:
            self._client.upsert(
                collection_name=self.collection_name,
                points=points,
                wait=True,
            )
        except Exception as e:
            raise StoreError(
                f"Failed to upsert {len(points)} points into {self.collection_name}: {e}"
            ) from e

        logger.debug(f"Upserted {len(points)} points (ids {points[0].id}..{points[-1].id})")

    def search(self, vector: list[float], k: int = 5) -> list[SearchHit]:
        """Return the k nearest points by cosine similarity."""
        try:
            response = self._client.query_points(
                collection_name=self.collection_name,
                query=vector,
                limit=k,
                with_payload=True,
            )
        except Exception as e:
            raise StoreError(f"Search failed on {self.collection_name}: {e}") from e

        return [
            SearchHit(id=int(hit.id), score=float(hit.score), payload=hit.payload or {})
            for hit in response.points
        ]

    def count(self) -> int:
        try:
            return int(self._client.count(self.collection_name, exact=True).count)
        except Exception as e:
            raise StoreError(f"Failed to count points in {self.collection_name}: {e}") from e

    def collection_info(self) -> CollectionInfo:
        """Get point count and status of the collection."""
        try:
            info = self._client.get_collection(self.collection_name)
        except Exception as e:
            raise StoreError(f"Failed to get collection info for {self.collection_name}: {e}") from e

        points_count = info.points_count
        if points_count is None:
            points_count = self.count()

        status = getattr(info.status, "value", info.status)
        return CollectionInfo(
            name=self.collection_name,
            points_count=int(points_count),
            status=str(status),
        )
