"""
Embedding Service - Map text to fixed-size vectors.

Wraps a sentence-transformers model. The model is loaded on first use and
kept on the service object, so callers construct one service and pass it to
everything that needs embeddings.
"""

from typing import Any, Optional
from loguru import logger

from .errors import EmbeddingError, FatalError


class EmbeddingService:
    """
    Sentence-transformers embedding generator.

    Features:
    - Lazy model loading (first call pays the load cost, later calls reuse it)
    - Normalized vectors, suitable for cosine distance
    - Deterministic output for identical input
    """

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-MiniLM-L6-v2",
        device: str = "cpu",
        model: Optional[Any] = None,
    ):
        """
        Initialize service.

        Args:
            model_name: Sentence transformer model to load
            device: Device for the model (cpu/cuda)
            model: Pre-built model object (skips loading)
        """
        self.model_name = model_name
        self.device = device
        self._model = model

    @property
    def model(self) -> Any:
        """The underlying model, loaded on first access."""
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer

                logger.info(f"Loading embedding model (first time only): {self.model_name}")
                self._model = SentenceTransformer(self.model_name, device=self.device)
                logger.info(f"Loaded embedding model: {self.model_name}")
            except Exception as e:
                logger.error(f"Failed to load embedding model: {e}")
                raise FatalError(f"Could not load embedding model {self.model_name}: {e}") from e
        return self._model

    @property
    def dimension(self) -> int:
        """Vector size produced by the model."""
        return int(self.model.get_sentence_embedding_dimension())

    def embed(self, text: str) -> list[float]:
        """
        Generate the embedding for a single text.

        Raises:
            EmbeddingError: If text is empty or the model fails on it
            FatalError: If the model can't be loaded
        """
        if not text or not text.strip():
            raise EmbeddingError("Cannot embed empty text")

        model = self.model
        try:
            vector = model.encode(
                text,
                normalize_embeddings=True,
                show_progress_bar=False,
            )
        except Exception as e:
            raise EmbeddingError(f"Embedding generation failed: {e}") from e

        return [float(x) for x in vector]
