"""
Resumable Batch Loader - Load the canonical corpus into both stores.

Every valid document gets a deterministic integer id: its 1-based position
in the valid-only sequence. The id keys the document store record and the
vector point alike, so a replayed batch overwrites instead of duplicating.

After each batch the vectors are upserted and the checkpoint is advanced
and written before the next batch starts. A crash between batches loses
nothing; a rerun resumes from the checkpoint.
"""

import json
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence
from loguru import logger

from ..core.errors import FatalError, ValidationError, EmbeddingError
from ..core.models import CanonicalDocument, has_valid_text, sanitize, embedding_payload
from ..core.vector_index import EmbeddingRecord
from .checkpoint import Checkpoint, CheckpointStore, corpus_fingerprint
from .events import (
    LoaderEvent,
    LoaderObserver,
    LoadStarted,
    BatchStarted,
    DocumentSkipped,
    BatchCompleted,
    Verified,
    LoadFinished,
)


class LoaderState(str, Enum):
    """Loader lifecycle states."""
    FRESH_START = "FRESH_START"
    RESUMING = "RESUMING"
    BATCH_PROCESSING = "BATCH_PROCESSING"
    VERIFYING = "VERIFYING"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class LoadStats:
    """Totals for one loader run."""

    total: int = 0
    valid: int = 0
    invalid: int = 0
    resumed_from: int = 0
    attempted: int = 0
    loaded: int = 0
    errors: int = 0
    batches: int = 0
    document_count: int = 0
    point_count: int = 0
    duration: float = 0.0


def read_corpus(corpus_file: Path | str) -> list[CanonicalDocument]:
    """
    Read the canonical corpus file (a JSON array of documents).

    Raises:
        FatalError: If the file is missing or not a JSON array
    """
    corpus_file = Path(corpus_file)
    try:
        with open(corpus_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise FatalError(f"Could not read corpus file {corpus_file}: {e}") from e

    if not isinstance(data, list):
        raise FatalError(f"Corpus file {corpus_file} must contain a JSON array")

    return [CanonicalDocument.from_dict(item) for item in data if isinstance(item, dict)]


class ResumableLoader:
    """
    Load documents into the document store and the vector index.

    Features:
    - Fresh start resets both stores; resume trusts [0, lastIndex)
    - Fixed-size sequential batches with a checkpoint after each
    - Per-document failures are counted and skipped
    - Periodic pause to bound resource usage
    - Progress reported through observers
    """

    def __init__(
        self,
        document_store: Any,
        vector_index: Any,
        embedder: Any,
        checkpoints: CheckpointStore,
        dimension: int,
        batch_size: int = 25,
        pause_every: int = 20,
        pause_seconds: float = 0.5,
        observers: Optional[Sequence[LoaderObserver]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize loader.

        Args:
            document_store: Store with create/delete/delete_all/count
            vector_index: Index with create_collection/delete_collection/upsert/collection_info
            embedder: Object with embed(text) -> list[float] and a dimension
            checkpoints: Checkpoint file access
            dimension: Vector size for the collection
            batch_size: Documents per batch
            pause_every: Pause after this many batches (0 disables)
            pause_seconds: Length of the pause
            observers: Receivers of loader events
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock (injectable for tests)
        """
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self.document_store = document_store
        self.vector_index = vector_index
        self.embedder = embedder
        self.checkpoints = checkpoints
        self.dimension = dimension
        self.batch_size = batch_size
        self.pause_every = pause_every
        self.pause_seconds = pause_seconds
        self.observers = list(observers or [])
        self._sleep = sleep
        self._clock = clock
        self.state: Optional[LoaderState] = None

    def load_file(self, corpus_file: Path | str, force_fresh: bool = False) -> LoadStats:
        """Read the corpus file and load it."""
        logger.info(f"Reading processed data file: {corpus_file}")
        try:
            documents = read_corpus(corpus_file)
        except FatalError:
            self.state = LoaderState.FAILED
            raise
        return self.load(documents, force_fresh=force_fresh)

    def load(self, documents: Iterable[CanonicalDocument], force_fresh: bool = False) -> LoadStats:
        """
        Load documents, resuming from the checkpoint when it matches.

        Raises:
            FatalError: On any failure outside a single document; the
                checkpoint is left in place so a rerun resumes.
        """
        started = self._clock()
        stats = LoadStats()

        try:
            documents = list(documents)
            valid = [doc for doc in documents if has_valid_text(doc)]
            stats.total = len(documents)
            stats.valid = len(valid)
            stats.invalid = len(documents) - len(valid)

            self._check_embedder()
            fingerprint = corpus_fingerprint(valid)
            resume_from = self._resume_position(fingerprint, len(valid), force_fresh)
            stats.resumed_from = resume_from

            if resume_from == 0:
                self.state = LoaderState.FRESH_START
                self._reset_stores()
            else:
                self.state = LoaderState.RESUMING
                logger.info(f"Resuming from document {resume_from} (previous run was interrupted)")

            total_batches = -(-(len(valid) - resume_from) // self.batch_size)
            self._emit(LoadStarted(
                state=self.state.value,
                total=stats.total,
                valid=stats.valid,
                invalid=stats.invalid,
                resume_from=resume_from,
                total_batches=total_batches,
            ))

            self.state = LoaderState.BATCH_PROCESSING
            for batch_num, start in enumerate(range(resume_from, len(valid), self.batch_size), 1):
                batch = valid[start:start + self.batch_size]
                self._run_batch(batch_num, total_batches, start, batch, fingerprint, stats)

                if self.pause_every and batch_num % self.pause_every == 0:
                    logger.debug(f"Pausing {self.pause_seconds}s after {batch_num} batches")
                    self._sleep(self.pause_seconds)

            self.state = LoaderState.VERIFYING
            self._verify(stats)

            self.checkpoints.clear()
            self.state = LoaderState.DONE
        except Exception as e:
            self.state = LoaderState.FAILED
            stats.duration = self._clock() - started
            self._emit(LoadFinished(self.state.value, stats.loaded, stats.errors, stats.duration))
            logger.error(f"Fatal error: {e}")
            logger.info("Progress saved. Run the loader again to resume.")
            if isinstance(e, FatalError):
                raise
            raise FatalError(f"Load aborted: {e}") from e

        stats.duration = self._clock() - started
        self._emit(LoadFinished(self.state.value, stats.loaded, stats.errors, stats.duration))
        return stats

    def _resume_position(self, fingerprint: str, valid_count: int, force_fresh: bool) -> int:
        """Checkpoint position to resume from, or 0 for a fresh start."""
        if force_fresh:
            logger.info("Fresh load requested, ignoring checkpoint")
            return 0
        checkpoint = self.checkpoints.load()
        if checkpoint is None or checkpoint.last_index == 0:
            return 0
        if checkpoint.fingerprint is None:
            logger.warning("Checkpoint has no fingerprint; assuming it matches the current corpus")
        elif checkpoint.fingerprint != fingerprint:
            logger.warning(
                "Checkpoint was written for a different corpus or validity rule; "
                "refusing to resume, starting fresh"
            )
            return 0
        if checkpoint.last_index > valid_count:
            logger.warning(
                f"Checkpoint lastIndex {checkpoint.last_index} exceeds {valid_count} valid documents; "
                f"starting fresh"
            )
            return 0
        return checkpoint.last_index

    def _check_embedder(self):
        """Load the model up front; a missing model or wrong vector size aborts the run."""
        dimension = self.embedder.dimension
        if dimension != self.dimension:
            raise FatalError(
                f"Embedding model produces {dimension}-dimensional vectors, "
                f"collection expects {self.dimension}"
            )

    def _reset_stores(self):
        logger.info("Setting up vector index...")
        self.vector_index.delete_collection()
        self.vector_index.create_collection(self.dimension, "Cosine")
        logger.info("Clearing existing document store data...")
        self.document_store.delete_all()

    def _run_batch(
        self,
        batch_num: int,
        total_batches: int,
        start: int,
        batch: list[CanonicalDocument],
        fingerprint: str,
        stats: LoadStats,
    ):
        self._emit(BatchStarted(batch_num, total_batches, start, len(batch), stats.valid))

        records: list[EmbeddingRecord] = []
        failed = 0
        for offset, document in enumerate(batch):
            record = self._process_document(start + offset + 1, document)
            if record is None:
                failed += 1
            else:
                records.append(record)

        self.vector_index.upsert(records)

        position = start + len(batch)
        self.checkpoints.save(Checkpoint(last_index=position, fingerprint=fingerprint))

        stats.batches += 1
        stats.attempted += len(batch)
        stats.loaded += len(records)
        stats.errors += failed
        self._emit(BatchCompleted(batch_num, total_batches, position, len(records), failed, stats.valid))

    def _process_document(self, doc_id: int, document: CanonicalDocument) -> Optional[EmbeddingRecord]:
        """Sanitize, store and embed one document; None if it was skipped."""
        stored = False
        try:
            doc = sanitize(document)
            self.document_store.create(doc_id, doc)
            stored = True

            vector = self.embedder.embed(doc.embedding_text)
            if len(vector) != self.dimension:
                raise EmbeddingError(f"Expected {self.dimension} dimensions, got {len(vector)}")

            return EmbeddingRecord(id=doc_id, vector=vector, payload=embedding_payload(doc))
        except FatalError:
            raise
        except Exception as e:
            if stored:
                self._discard(doc_id)
            self._emit(DocumentSkipped(
                position=doc_id,
                reference=document.reference,
                error=str(e),
                silent=isinstance(e, ValidationError),
            ))
            return None

    def _discard(self, doc_id: int):
        """Remove a stored document whose vector could not be produced."""
        try:
            self.document_store.delete(doc_id)
        except Exception as e:
            logger.warning(f"Could not remove document {doc_id} after embedding failure: {e}")

    def _verify(self, stats: LoadStats):
        logger.info("Verifying databases...")
        stats.document_count = self.document_store.count()
        info = self.vector_index.collection_info()
        stats.point_count = info.points_count
        self._emit(Verified(stats.document_count, stats.point_count, info.status))

    def _emit(self, event: LoaderEvent):
        for observer in self.observers:
            observer.handle(event)
