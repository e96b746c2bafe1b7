"""
Tests for the resumable batch loader.

Run with: pytest backend/knowledge_service/tests/test_loader.py
"""

import json

import pytest
from unittest.mock import patch

from ..core.errors import FatalError, StoreError, ValidationError
from ..core.models import CanonicalDocument
from ..data_ingestion.checkpoint import Checkpoint, CheckpointStore, corpus_fingerprint
from ..data_ingestion.events import (
    LoadStarted,
    BatchStarted,
    BatchCompleted,
    DocumentSkipped,
    Verified,
    LoadFinished,
    LoggingObserver,
    LoaderObserver,
    EtaTracker,
    format_duration,
)
from ..data_ingestion.loader import ResumableLoader, LoaderState, read_corpus
from .conftest import DIMENSION, FakeEmbedder, make_documents


class RecordingObserver(LoaderObserver):
    def __init__(self):
        self.events = []

    def handle(self, event):
        self.events.append(event)

    def of_type(self, kind):
        return [e for e in self.events if isinstance(e, kind)]


class RecordingCheckpointStore(CheckpointStore):
    def __init__(self, path):
        super().__init__(path)
        self.saved = []

    def save(self, checkpoint):
        self.saved.append(checkpoint.last_index)
        super().save(checkpoint)


class KillAfterBatch(LoaderObserver):
    """Simulates the process dying right after a given batch is committed."""

    def __init__(self, batch_num):
        self.batch_num = batch_num

    def handle(self, event):
        if isinstance(event, BatchCompleted) and event.batch_num == self.batch_num:
            raise KeyboardInterrupt


def point_ids(qdrant_client, collection="test_knowledge"):
    points, _ = qdrant_client.scroll(collection, limit=1000, with_payload=True)
    return sorted(int(p.id) for p in points)


def payloads_by_id(qdrant_client, collection="test_knowledge"):
    points, _ = qdrant_client.scroll(collection, limit=1000, with_payload=True)
    return {int(p.id): p.payload for p in points}


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def make_loader(document_store, vector_index, embedder, checkpoint_store, observer, sleeps):
    def factory(**overrides):
        kwargs = dict(
            document_store=document_store,
            vector_index=vector_index,
            embedder=embedder,
            checkpoints=checkpoint_store,
            dimension=DIMENSION,
            batch_size=25,
            observers=[observer],
            sleep=sleeps.append,
        )
        kwargs.update(overrides)
        return ResumableLoader(**kwargs)
    return factory


# =============================================================================
# BATCHING AND IDS
# =============================================================================

class TestBatching:
    """Batch layout, checkpoints and deterministic ids."""

    def test_thirty_documents_make_two_batches(self, make_loader, tmp_path, qdrant_client):
        checkpoints = RecordingCheckpointStore(tmp_path / "progress.json")
        loader = make_loader(checkpoints=checkpoints)

        stats = loader.load(make_documents(30))

        assert stats.batches == 2
        assert checkpoints.saved == [25, 30]
        assert point_ids(qdrant_client) == list(range(1, 31))
        assert stats.loaded == 30
        assert stats.errors == 0
        assert loader.state == LoaderState.DONE

    def test_checkpoint_removed_when_done(self, make_loader, checkpoint_store):
        make_loader().load(make_documents(5))
        assert checkpoint_store.load() is None
        assert not checkpoint_store.path.exists()

    @pytest.mark.parametrize("batch_size", [1, 7, 25, 100])
    def test_ids_independent_of_batch_size(self, make_loader, qdrant_client, batch_size):
        docs = make_documents(30)
        make_loader(batch_size=batch_size).load(docs)

        payloads = payloads_by_id(qdrant_client)
        assert sorted(payloads) == list(range(1, 31))
        for doc_id, payload in payloads.items():
            assert payload["reference"] == docs[doc_id - 1].reference

    def test_ids_follow_valid_only_sequence(self, make_loader, qdrant_client, document_store):
        docs = make_documents(3)
        docs.insert(1, CanonicalDocument(source_type="Hadith", reference="Muslim 1", english_text="  tiny  "))

        stats = make_loader().load(docs)

        assert stats.total == 4
        assert stats.valid == 3
        assert stats.invalid == 1
        payloads = payloads_by_id(qdrant_client)
        assert payloads[2]["reference"] == "Sahih Bukhari 2"
        assert "Muslim 1" not in [d.reference for d in document_store.documents.values()]

    def test_payload_fields(self, make_loader, qdrant_client):
        docs = make_documents(1)
        make_loader().load(docs)

        payload = payloads_by_id(qdrant_client)[1]
        assert payload == {
            "text": docs[0].english_text,
            "source_type": "Hadith",
            "reference": "Sahih Bukhari 1",
        }

    def test_documents_sanitized_before_store(self, make_loader, document_store):
        doc = CanonicalDocument(source_type="", reference="", arabic_text="بسم الله الرحمن الرحيم", tags=[])
        make_loader().load([doc])

        stored = document_store.documents[1]
        assert stored.source_type == "Hadith"
        assert stored.reference == "Unknown Reference"
        assert stored.english_text == "بسم الله الرحمن الرحيم"
        assert stored.tags == ["general"]

    def test_pause_after_every_twenty_batches(self, make_loader, sleeps):
        make_loader(batch_size=1).load(make_documents(45))
        assert sleeps == [0.5, 0.5]

    def test_empty_corpus_completes(self, make_loader, vector_index):
        stats = make_loader().load([])

        assert stats.batches == 0
        assert stats.document_count == 0
        assert vector_index.exists()

    def test_rejects_zero_batch_size(self, make_loader):
        with pytest.raises(ValueError):
            make_loader(batch_size=0)


# =============================================================================
# PER-DOCUMENT FAILURES
# =============================================================================

class TestDocumentFailures:
    """A failing document is skipped and counted; the run continues."""

    def test_embedding_failure_keeps_stores_consistent(
        self, make_loader, embedder, document_store, vector_index
    ):
        docs = make_documents(30)
        embedder.fail_texts.add(docs[4].english_text)

        stats = make_loader().load(docs)

        assert stats.errors == 1
        assert stats.loaded == 29
        assert document_store.count() == 29
        assert vector_index.count() == 29
        assert stats.document_count == 29
        assert stats.point_count == 29
        assert document_store.deleted == [5]

    def test_store_failure_skips_document(self, make_loader, document_store, embedder, qdrant_client):
        docs = make_documents(10)
        document_store.fail_ids.add(3)

        stats = make_loader().load(docs)

        assert stats.errors == 1
        assert 3 not in point_ids(qdrant_client)
        assert docs[2].english_text not in embedder.calls

    def test_short_vector_is_skipped(self, make_loader):
        class ShortVectors(FakeEmbedder):
            def embed(self, text):
                return super().embed(text)[:4]

        stats = make_loader(embedder=ShortVectors()).load(make_documents(3))
        assert stats.errors == 3
        assert stats.loaded == 0

    def test_validation_error_is_silent(self, make_loader, document_store, observer):
        def reject(doc_id, document):
            raise ValidationError("bad source_type")

        with patch.object(document_store, "create", side_effect=reject):
            stats = make_loader().load(make_documents(2))

        skipped = observer.of_type(DocumentSkipped)
        assert stats.errors == 2
        assert [s.position for s in skipped] == [1, 2]
        assert all(s.silent for s in skipped)

    def test_embedding_failure_is_reported(self, make_loader, embedder, observer):
        docs = make_documents(3)
        embedder.fail_texts.add(docs[1].english_text)

        make_loader().load(docs)

        skipped = observer.of_type(DocumentSkipped)
        assert len(skipped) == 1
        assert skipped[0].position == 2
        assert skipped[0].reference == "Sahih Bukhari 2"
        assert not skipped[0].silent


# =============================================================================
# RESUME
# =============================================================================

class TestResume:
    """Checkpoint-driven resume and fresh-start decisions."""

    def test_restart_after_kill_resumes_at_26(
        self, make_loader, checkpoint_store, document_store, qdrant_client, observer
    ):
        docs = make_documents(30)

        loader = make_loader(observers=[observer, KillAfterBatch(1)])
        with pytest.raises(KeyboardInterrupt):
            loader.load(docs)
        assert checkpoint_store.load().last_index == 25
        assert point_ids(qdrant_client) == list(range(1, 26))

        embedder = FakeEmbedder()
        document_store.create_calls.clear()
        stats = make_loader(embedder=embedder).load(docs)

        assert stats.resumed_from == 25
        assert document_store.create_calls == [26, 27, 28, 29, 30]
        assert embedder.calls == [d.english_text for d in docs[25:]]
        assert point_ids(qdrant_client) == list(range(1, 31))
        assert document_store.count() == 30
        assert document_store.cleared == 1

    def test_resume_emits_resuming_state(self, make_loader, checkpoint_store, observer):
        docs = make_documents(30)
        make_loader().load(docs[:0])  # creates the collection
        checkpoint_store.save(Checkpoint(25, corpus_fingerprint(docs)))

        make_loader().load(docs)

        started = observer.of_type(LoadStarted)[-1]
        assert started.state == "RESUMING"
        assert started.resume_from == 25
        assert started.total_batches == 1

    def test_fingerprint_mismatch_starts_fresh(
        self, make_loader, checkpoint_store, embedder, document_store, observer
    ):
        checkpoint_store.save(Checkpoint(10, "not-this-corpus"))

        stats = make_loader().load(make_documents(12))

        assert stats.resumed_from == 0
        assert observer.of_type(LoadStarted)[0].state == "FRESH_START"
        assert len(embedder.calls) == 12
        assert document_store.cleared == 1

    def test_changed_corpus_starts_fresh(self, make_loader, checkpoint_store, embedder):
        checkpoint_store.save(Checkpoint(5, corpus_fingerprint(make_documents(10))))

        make_loader().load(make_documents(10, start=100))

        assert len(embedder.calls) == 10

    def test_checkpoint_without_fingerprint_is_trusted(self, make_loader, checkpoint_store, embedder, vector_index):
        vector_index.create_collection(DIMENSION)
        checkpoint_store.save(Checkpoint(25))

        stats = make_loader().load(make_documents(30))

        assert stats.resumed_from == 25
        assert len(embedder.calls) == 5

    def test_checkpoint_past_end_starts_fresh(self, make_loader, checkpoint_store, embedder):
        checkpoint_store.save(Checkpoint(50))

        stats = make_loader().load(make_documents(30))

        assert stats.resumed_from == 0
        assert len(embedder.calls) == 30

    def test_force_fresh_ignores_checkpoint(self, make_loader, checkpoint_store, embedder):
        docs = make_documents(30)
        checkpoint_store.save(Checkpoint(25, corpus_fingerprint(docs)))

        stats = make_loader().load(docs, force_fresh=True)

        assert stats.resumed_from == 0
        assert len(embedder.calls) == 30

    def test_fresh_start_empties_both_stores(self, make_loader, document_store, vector_index, qdrant_client):
        from ..core.vector_index import EmbeddingRecord

        vector_index.create_collection(DIMENSION)
        vector_index.upsert([EmbeddingRecord(id=99, vector=[0.5] * DIMENSION, payload={"reference": "stale"})])
        document_store.documents[99] = make_documents(1)[0]

        make_loader().load(make_documents(3))

        assert point_ids(qdrant_client) == [1, 2, 3]
        assert 99 not in document_store.documents

    def test_two_fresh_runs_give_same_counts(self, make_loader, document_store, vector_index):
        docs = make_documents(40)
        first = make_loader().load(docs)
        second = make_loader().load(docs)

        assert (first.document_count, first.point_count) == (40, 40)
        assert (second.document_count, second.point_count) == (40, 40)
        assert document_store.count() == vector_index.count()


# =============================================================================
# FATAL FAILURES
# =============================================================================

class TestFatalFailures:
    """Batch-level failures abort the run and keep the checkpoint."""

    def test_upsert_failure_is_fatal(self, make_loader, vector_index, checkpoint_store):
        loader = make_loader()
        with patch.object(vector_index, "upsert", side_effect=[None, StoreError("qdrant down")]):
            with pytest.raises(FatalError):
                loader.load(make_documents(30))

        assert loader.state == LoaderState.FAILED
        assert checkpoint_store.load().last_index == 25

    def test_checkpoint_write_failure_is_fatal(self, make_loader, checkpoint_store):
        loader = make_loader()
        with patch.object(checkpoint_store, "save", side_effect=FatalError("disk full")):
            with pytest.raises(FatalError, match="disk full"):
                loader.load(make_documents(3))
        assert loader.state == LoaderState.FAILED

    def test_reset_failure_is_fatal(self, make_loader, document_store):
        loader = make_loader()
        with patch.object(document_store, "delete_all", side_effect=StoreError("connection refused")):
            with pytest.raises(FatalError) as exc_info:
                loader.load(make_documents(3))

        assert isinstance(exc_info.value.__cause__, StoreError)
        assert loader.state == LoaderState.FAILED

    def test_corrupt_checkpoint_is_fatal(self, make_loader, checkpoint_store):
        checkpoint_store.path.write_text("{not json", encoding="utf-8")
        loader = make_loader()

        with pytest.raises(FatalError):
            loader.load(make_documents(3))
        assert loader.state == LoaderState.FAILED

    def test_fresh_load_skips_corrupt_checkpoint(self, make_loader, checkpoint_store, embedder):
        checkpoint_store.path.write_text("{not json", encoding="utf-8")
        loader = make_loader()

        stats = loader.load(make_documents(3), force_fresh=True)

        assert loader.state == LoaderState.DONE
        assert stats.loaded == 3
        assert len(embedder.calls) == 3

    def test_model_load_failure_is_fatal(self, make_loader, checkpoint_store, document_store, observer):
        from ..core.embeddings import EmbeddingService

        docs = make_documents(30)
        checkpoint_store.save(Checkpoint(25, corpus_fingerprint(docs)))
        loader = make_loader(embedder=EmbeddingService("no/such-model"))

        with patch("sentence_transformers.SentenceTransformer", side_effect=OSError("no such model")):
            with pytest.raises(FatalError, match="no/such-model"):
                loader.load(docs)

        assert loader.state == LoaderState.FAILED
        assert checkpoint_store.load().last_index == 25
        assert document_store.cleared == 0
        assert observer.of_type(DocumentSkipped) == []

    def test_dimension_mismatch_is_fatal_before_reset(self, make_loader, document_store, checkpoint_store):
        checkpoint_store.save(Checkpoint(10))
        loader = make_loader(embedder=FakeEmbedder(dimension=4))

        with pytest.raises(FatalError, match="4-dimensional"):
            loader.load(make_documents(3))

        assert loader.state == LoaderState.FAILED
        assert document_store.cleared == 0
        assert checkpoint_store.load().last_index == 10

    def test_failed_run_reports_finish(self, make_loader, vector_index, observer):
        with patch.object(vector_index, "upsert", side_effect=StoreError("qdrant down")):
            with pytest.raises(FatalError):
                make_loader().load(make_documents(3))

        finished = observer.of_type(LoadFinished)
        assert finished[-1].state == "FAILED"


# =============================================================================
# EVENTS AND FILE INPUT
# =============================================================================

class TestEventsAndInput:
    """Event stream and corpus file reading."""

    def test_event_order(self, make_loader, observer):
        make_loader(batch_size=2).load(make_documents(3))

        kinds = [type(e) for e in observer.events]
        assert kinds == [
            LoadStarted,
            BatchStarted, BatchCompleted,
            BatchStarted, BatchCompleted,
            Verified,
            LoadFinished,
        ]
        assert observer.of_type(Verified)[0].collection_status == "green"
        assert observer.of_type(LoadFinished)[0].state == "DONE"

    def test_eta_uses_injected_clock(self):
        now = [100.0]
        eta = EtaTracker(clock=lambda: now[0])

        assert eta.eta(50) == "calculating..."
        eta.start()
        now[0] = 110.0
        eta.advance(25)

        assert eta.eta(50) == "20s"
        assert eta.eta(750) == "5m 0s"

    def test_format_duration(self):
        assert format_duration(3) == "3s"
        assert format_duration(123) == "2m 3s"
        assert format_duration(3723) == "1h 2m 3s"

    def test_logging_observer_handles_every_event(self, make_loader, embedder):
        docs = make_documents(5)
        embedder.fail_texts.add(docs[0].english_text)
        stats = make_loader(observers=[LoggingObserver()], batch_size=2).load(docs)
        assert stats.errors == 1

    def test_load_file(self, make_loader, tmp_path):
        corpus = tmp_path / "processed_islamic_data.json"
        corpus.write_text(json.dumps([d.to_dict() for d in make_documents(4)]), encoding="utf-8")

        stats = make_loader().load_file(corpus)

        assert stats.total == 4
        assert stats.loaded == 4

    def test_missing_corpus_is_fatal(self, make_loader, tmp_path):
        loader = make_loader()
        with pytest.raises(FatalError):
            loader.load_file(tmp_path / "absent.json")
        assert loader.state == LoaderState.FAILED

    def test_read_corpus_requires_array(self, tmp_path):
        corpus = tmp_path / "corpus.json"
        corpus.write_text('{"reference": "x"}', encoding="utf-8")
        with pytest.raises(FatalError):
            read_corpus(corpus)

    def test_non_string_text_is_loaded_as_text(self, make_loader, tmp_path, document_store):
        records = [d.to_dict() for d in make_documents(2)]
        records.append({"source_type": "Hadith", "reference": 3, "english_text": 1234567})
        records.append({"source_type": "Hadith", "reference": "x", "english_text": ["not", "text"]})
        corpus = tmp_path / "corpus.json"
        corpus.write_text(json.dumps(records), encoding="utf-8")

        loader = make_loader()
        stats = loader.load_file(corpus)

        assert loader.state == LoaderState.DONE
        assert stats.total == 4
        assert document_store.documents[3].english_text == "1234567"
        assert document_store.documents[3].reference == "3"

    def test_read_corpus_skips_non_objects(self, tmp_path):
        corpus = tmp_path / "corpus.json"
        corpus.write_text(json.dumps([make_documents(1)[0].to_dict(), "junk", 3]), encoding="utf-8")
        assert len(read_corpus(corpus)) == 1
