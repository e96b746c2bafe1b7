"""
Configuration management for the ingestion service using Pydantic Settings.

Supports environment variables and .env files for configuration.
Nested groups are addressed with a double underscore, e.g.
``KB_QDRANT__URL`` or ``KB_LOADER__BATCH_SIZE``.
"""

from typing import Optional
from pathlib import Path
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QdrantSettings(BaseModel):
    """Qdrant vector database settings."""

    url: Optional[str] = Field(default=None, description="Full Qdrant URL (takes precedence over host/port)")
    host: str = Field(default="localhost", description="Qdrant server host")
    port: int = Field(default=6333, description="Qdrant server port")
    collection_name: str = Field(default="islamic_knowledge", description="Collection holding verse/hadith vectors")
    api_key: Optional[str] = Field(default=None, description="Qdrant API key if using cloud")
    timeout: int = Field(default=60, description="Request timeout in seconds")


class MongoSettings(BaseModel):
    """MongoDB document store settings."""

    uri: str = Field(default="mongodb://localhost:27017", description="MongoDB connection URI")
    database: str = Field(default="islamic_knowledge", description="Database name")
    collection: str = Field(default="knowledgesources", description="Collection for canonical documents")
    timeout_ms: int = Field(default=5000, description="Server selection timeout in milliseconds")


class EmbeddingSettings(BaseModel):
    """Embedding model settings."""

    model_name: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="Sentence transformer model for embeddings"
    )
    device: str = Field(default="cpu", description="Device for embedding model (cpu/cuda)")
    dimension: int = Field(default=384, description="Vector size produced by the model")


class FetchSettings(BaseModel):
    """Remote source fetching settings."""

    max_attempts: int = Field(default=3, description="Attempts per URL before giving up")
    backoff_seconds: float = Field(default=1.0, description="Linear backoff unit: attempt n waits n * unit")
    timeout: float = Field(default=60.0, description="HTTP request timeout in seconds")
    quran_cdn_base: str = Field(
        default="https://cdn.jsdelivr.net/gh/fawazahmed0/quran-api@1/editions",
        description="Primary Quran source"
    )
    quran_api_base: str = Field(
        default="https://api.quran.com/api/v4",
        description="Fallback Quran source"
    )
    hadith_cdn_base: str = Field(
        default="https://cdn.jsdelivr.net/gh/fawazahmed0/hadith-api@1",
        description="Hadith collections source"
    )


class LoaderSettings(BaseModel):
    """Batch loader settings."""

    batch_size: int = Field(default=25, description="Documents per batch")
    pause_every: int = Field(default=20, description="Pause after this many batches")
    pause_seconds: float = Field(default=0.5, description="Length of the periodic pause")


class Settings(BaseSettings):
    """Main settings for the ingestion service."""

    # Sub-settings with defaults
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    mongo: MongoSettings = Field(default_factory=MongoSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    loader: LoaderSettings = Field(default_factory=LoaderSettings)

    # Paths
    data_dir: Path = Field(default=Path("data"), description="Data directory path")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Optional log file (rotated)")

    @property
    def raw_dir(self) -> Path:
        return self.data_dir / "raw"

    @property
    def corpus_file(self) -> Path:
        return self.data_dir / "processed_islamic_data.json"

    @property
    def checkpoint_file(self) -> Path:
        return self.data_dir / "load_progress.json"

    model_config = SettingsConfigDict(
        env_prefix="KB_",
        env_file=str(Path(__file__).parent.parent / ".env"),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        nested_model_default_partial_update=True,
        case_sensitive=False,
        extra="ignore"
    )


# Load .env file explicitly before creating settings instance
_env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=False)  # Only load if not already set


def get_settings() -> Settings:
    """Build a fresh settings object from the current environment."""
    return Settings()


# Global settings instance
settings = get_settings()
