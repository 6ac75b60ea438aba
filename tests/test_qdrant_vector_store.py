"""
Unit tests for QdrantVectorStore.

Runs against an in-memory Qdrant client: inserts, nearest-neighbour
queries, filtering, deletion, enumeration, and statistics.
"""

import uuid

import pytest
from qdrant_client import QdrantClient

from memrag.config import VectorStoreConfig
from memrag.errors import StoreError
from memrag.models import MemoryRecord, Modality
from memrag.retrieval.vectordb import QdrantVectorStore

from conftest import DIMENSION, fake_embedding


def make_record(text, modality=Modality.TEXT, metadata=None, timestamp=1, embedding=None):
    return MemoryRecord(
        id=str(uuid.uuid4()),
        text=text,
        modality=modality,
        embedding=embedding if embedding is not None else fake_embedding(text),
        timestamp=timestamp,
        metadata=metadata or {}
    )


class TestQdrantVectorStore:
    """Test suite for QdrantVectorStore."""

    @pytest.fixture
    def sample_records(self):
        return [
            make_record("the cat sat on the mat", Modality.TEXT, {"role": "user"}),
            make_record("a dog barked at night", Modality.AUDIO, {"audio_name": "dog.mp3"}),
            make_record("sunset over the ocean", Modality.IMAGE, {"image_name": "sunset.jpg"}),
        ]

    def test_initialization_creates_collection(self, vector_store):
        info = vector_store.get_collection_info()
        assert info["collection_name"] == "test_memories"
        assert info["vector_size"] == DIMENSION
        assert info["points_count"] == 0

    def test_existing_collection_dimension_mismatch(self):
        client = QdrantClient(location=":memory:")
        QdrantVectorStore(VectorStoreConfig(collection_name="shared", embedding_dimension=DIMENSION), client=client)

        with pytest.raises(StoreError) as exc_info:
            QdrantVectorStore(VectorStoreConfig(collection_name="shared", embedding_dimension=DIMENSION * 2), client=client)
        assert "dimension" in exc_info.value.message

    def test_existing_collection_reused(self):
        client = QdrantClient(location=":memory:")
        config = VectorStoreConfig(collection_name="shared", embedding_dimension=DIMENSION)
        first = QdrantVectorStore(config, client=client)
        first.insert([make_record("persisted memory")])

        second = QdrantVectorStore(config, client=client)
        assert second.stats().count == 1

    def test_insert_and_query(self, vector_store, sample_records):
        ids = vector_store.insert(sample_records)
        assert ids == [record.id for record in sample_records]

        matches = vector_store.query(fake_embedding("the cat sat on the mat"), top_k=3)

        assert matches[0].id == sample_records[0].id
        assert matches[0].score == pytest.approx(1.0, abs=1e-4)
        assert matches[0].payload["text"] == "the cat sat on the mat"
        assert matches[0].payload["modality"] == "text"
        assert matches[0].payload["metadata"] == {"role": "user"}

    def test_query_orders_by_descending_score(self, vector_store, sample_records):
        vector_store.insert(sample_records)

        matches = vector_store.query(fake_embedding("the ocean at sunset"), top_k=3)

        scores = [match.score for match in matches]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.parametrize("top_k", [1, 2, 10])
    def test_query_respects_top_k(self, vector_store, sample_records, top_k):
        vector_store.insert(sample_records)

        matches = vector_store.query(fake_embedding("cat"), top_k=top_k)

        assert len(matches) == min(top_k, len(sample_records))

    def test_query_non_positive_top_k(self, vector_store, sample_records):
        vector_store.insert(sample_records)
        assert vector_store.query(fake_embedding("cat"), top_k=0) == []

    def test_query_empty_store(self, vector_store):
        assert vector_store.query(fake_embedding("anything"), top_k=5) == []

    def test_query_with_modality_filter(self, vector_store, sample_records):
        vector_store.insert(sample_records)

        matches = vector_store.query(fake_embedding("cat"), top_k=10, filter_conditions={"modality": "audio"})

        assert [match.payload["modality"] for match in matches] == ["audio"]

    def test_query_with_metadata_filter(self, vector_store, sample_records):
        vector_store.insert(sample_records)

        matches = vector_store.query(
            fake_embedding("cat"), top_k=10, filter_conditions={"image_name": "sunset.jpg"}
        )

        assert len(matches) == 1
        assert matches[0].id == sample_records[2].id

    def test_insert_dimension_mismatch_writes_nothing(self, vector_store):
        good = make_record("valid record")
        bad = make_record("invalid record", embedding=[1.0] * (DIMENSION + 1))

        with pytest.raises(StoreError):
            vector_store.insert([good, bad])

        assert vector_store.stats().count == 0

    def test_insert_empty_text(self, vector_store):
        with pytest.raises(StoreError):
            vector_store.insert([make_record(" ", embedding=[1.0] * DIMENSION)])

    def test_query_dimension_mismatch(self, vector_store):
        with pytest.raises(StoreError):
            vector_store.query([1.0, 0.0], top_k=1)

    def test_delete_and_list_ids(self, vector_store, sample_records):
        vector_store.insert(sample_records)
        assert sorted(vector_store.list_ids()) == sorted(record.id for record in sample_records)

        vector_store.delete_by_ids([sample_records[0].id])

        remaining = vector_store.list_ids()
        assert sample_records[0].id not in remaining
        assert len(remaining) == 2

    def test_list_ids_limit(self, vector_store, sample_records):
        vector_store.insert(sample_records)
        assert len(vector_store.list_ids(limit=2)) == 2

    def test_stats_exact(self, vector_store, sample_records):
        vector_store.insert(sample_records + [make_record("another text memory")])

        stats = vector_store.stats()

        assert stats.exact
        assert stats.count == 4
        assert stats.count_by_modality == {"text": 2, "audio": 1, "image": 1}

    def test_stats_idempotent(self, vector_store, sample_records):
        vector_store.insert(sample_records)
        assert vector_store.stats() == vector_store.stats()

    def test_stats_sampled(self, store_config, sample_records):
        store_config.sample_stats = True
        store_config.stats_sample_limit = 2
        store = QdrantVectorStore(store_config, client=QdrantClient(location=":memory:"))
        store.insert(sample_records)

        stats = store.stats()

        assert not stats.exact
        assert stats.count == 2
        assert sum(stats.count_by_modality.values()) == 2
