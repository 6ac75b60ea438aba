"""Shared fixtures: a deterministic fake gateway and an in-memory Qdrant store."""

import hashlib
import math
from typing import List
from unittest.mock import Mock

import pytest
from qdrant_client import QdrantClient

from memrag.config import MediaConfig, MemoryConfig, VectorStoreConfig
from memrag.llm.workers_ai_client import WorkersAIClient
from memrag.retrieval.memory_service import MemoryService
from memrag.retrieval.vectordb import QdrantVectorStore

DIMENSION = 8


def fake_embedding(text: str) -> List[float]:
    """Bag-of-words hash embedding: identical texts map to identical unit vectors."""
    vector = [0.0] * DIMENSION
    for token in text.lower().split():
        digest = hashlib.md5(token.encode("utf-8")).digest()
        vector[digest[0] % DIMENSION] += 1.0
    norm = math.sqrt(sum(v * v for v in vector)) or 1.0
    return [v / norm for v in vector]


@pytest.fixture
def gateway():
    """Mock inference gateway with deterministic embeddings."""
    mock_gateway = Mock(spec=WorkersAIClient)
    mock_gateway.embed.side_effect = fake_embedding
    mock_gateway.embed_batch.side_effect = lambda texts: [fake_embedding(t) for t in texts]
    mock_gateway.complete.return_value = "mock answer"
    mock_gateway.describe_image.return_value = "a red square"
    mock_gateway.describe_image_url.return_value = "a frame description"
    return mock_gateway


@pytest.fixture
def store_config():
    return VectorStoreConfig(collection_name="test_memories", embedding_dimension=DIMENSION)


@pytest.fixture
def vector_store(store_config):
    """QdrantVectorStore backed by an in-memory client."""
    return QdrantVectorStore(store_config, client=QdrantClient(location=":memory:"))


@pytest.fixture
def memory_service(gateway, vector_store):
    return MemoryService(gateway, vector_store, MemoryConfig())


@pytest.fixture
def media_config():
    return MediaConfig()
