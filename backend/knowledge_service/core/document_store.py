"""
Document Store - MongoDB collection holding full canonical documents.

Each document is stored under the same integer id as its vector, and writes
replace by id, so replaying a batch overwrites instead of duplicating.
"""

from datetime import datetime, timezone
from typing import Any
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError as SchemaError

from .errors import StoreError, ValidationError
from .models import CanonicalDocument, SourceType


class KnowledgeSource(BaseModel):
    """Schema every stored document must satisfy."""

    model_config = ConfigDict(use_enum_values=True, extra="ignore")

    source_type: SourceType
    reference: str = Field(min_length=1)
    arabic_text: str = ""
    english_text: str = ""
    context: str = ""
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MongoDocumentStore:
    """
    Document store backed by a pymongo collection.

    Supports:
    - create (replace-by-id, schema validated)
    - delete / delete_all
    - count
    """

    def __init__(self, collection: Any):
        self._collection = collection

    @classmethod
    def connect(
        cls,
        uri: str,
        database: str,
        collection: str,
        timeout_ms: int = 5000,
    ) -> "MongoDocumentStore":
        """Open a MongoDB client and wrap the named collection."""
        from pymongo import MongoClient
        from pymongo.errors import PyMongoError

        try:
            client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        except PyMongoError as e:
            raise StoreError(f"Failed to create MongoDB client: {e}") from e
        logger.info(f"MongoDB client created for {database}.{collection}")
        return cls(client[database][collection])

    def ping(self) -> None:
        """Check the server is reachable."""
        from pymongo.errors import PyMongoError

        try:
            self._collection.database.client.admin.command("ping")
        except PyMongoError as e:
            raise StoreError(f"MongoDB is not reachable: {e}") from e
        logger.info("MongoDB connected")

    def create(self, doc_id: int, document: CanonicalDocument) -> None:
        """
        Store a document under doc_id.

        Raises:
            ValidationError: If the document fails the schema
            StoreError: On driver errors
        """
        from pymongo.errors import PyMongoError

        try:
            record = KnowledgeSource.model_validate(document.to_dict())
        except SchemaError as e:
            raise ValidationError(f"Document {document.reference!r} rejected: {e}") from e

        body = {"_id": doc_id, **record.model_dump()}
        try:
            self._collection.replace_one({"_id": doc_id}, body, upsert=True)
        except PyMongoError as e:
            raise StoreError(f"Failed to store document {doc_id}: {e}") from e

    def delete(self, doc_id: int) -> None:
        from pymongo.errors import PyMongoError

        try:
            self._collection.delete_one({"_id": doc_id})
        except PyMongoError as e:
            raise StoreError(f"Failed to delete document {doc_id}: {e}") from e

    def delete_all(self) -> int:
        """Remove every document; returns how many were deleted."""
        from pymongo.errors import PyMongoError

        try:
            result = self._collection.delete_many({})
        except PyMongoError as e:
            raise StoreError(f"Failed to clear document store: {e}") from e

        logger.info(f"Cleared document store ({result.deleted_count} documents removed)")
        return result.deleted_count

    def count(self) -> int:
        from pymongo.errors import PyMongoError

        try:
            return int(self._collection.count_documents({}))
        except PyMongoError as e:
            raise StoreError(f"Failed to count documents: {e}") from e
