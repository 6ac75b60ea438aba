"""
Qdrant-based vector storage for memories.

Stores one point per MemoryRecord with its text, modality, timestamp, and
extension metadata as payload. Supports filtered nearest-neighbour queries,
delete by id, enumeration, and aggregate statistics.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from qdrant_client import QdrantClient
from qdrant_client.http import models

from ...config import VectorStoreConfig
from ...errors import StoreError
from ...models import MemoryRecord, Modality, StoreStats, VectorMatch

logger = logging.getLogger(__name__)

# Payload keys stored at the top level; everything else lives under "metadata".
_TOP_LEVEL_KEYS = ("text", "modality", "timestamp")


class QdrantVectorStore:
    """
    Qdrant-based vector storage for memory records.

    Features:
    - Remote, on-disk, or in-memory Qdrant backends
    - All-or-nothing batch inserts with dimension validation
    - Metadata equality filtering
    - Exact or sampled statistics by modality
    """

    def __init__(self, config: VectorStoreConfig, client: Optional[QdrantClient] = None):
        """
        Initialize Qdrant vector store.

        Args:
            config: Vector store configuration
            client: Optional pre-built client (tests pass an in-memory one)
        """
        self.config = config
        self.collection_name = config.collection_name
        self.dimension = config.embedding_dimension

        if client is not None:
            self.client = client
            location = "injected client"
        elif config.url:
            self.client = QdrantClient(url=config.url, api_key=config.api_key)
            location = config.url
        elif config.path:
            self.client = QdrantClient(path=config.path)
            location = config.path
        else:
            self.client = QdrantClient(location=":memory:")
            location = ":memory:"

        self._ensure_collection_exists()

        logger.info(f"QdrantVectorStore initialized with collection {self.collection_name} at {location}")

    def _ensure_collection_exists(self) -> None:
        """Create the collection, or verify an existing one has the configured dimension."""
        try:
            collections = self.client.get_collections()
            collection_exists = any(
                col.name == self.collection_name for col in collections.collections
            )

            if not collection_exists:
                logger.info(f"Creating collection: {self.collection_name}")
                self.client.create_collection(
                    collection_name=self.collection_name,
                    vectors_config=models.VectorParams(
                        size=self.dimension,
                        distance=models.Distance.COSINE
                    )
                )
                return

            info = self.client.get_collection(self.collection_name)
            existing_size = info.config.params.vectors.size
        except Exception as e:
            logger.error(f"Error ensuring collection exists: {e}")
            raise StoreError(f"Failed to prepare collection {self.collection_name}: {e}", cause=e)

        if existing_size != self.dimension:
            raise StoreError(
                f"Collection {self.collection_name} holds {existing_size}-dimensional vectors "
                f"but the configured embedding dimension is {self.dimension}"
            )

    def _check_dimension(self, vector: Sequence[float], label: str) -> None:
        if len(vector) != self.dimension:
            raise StoreError(
                f"{label} has dimension {len(vector)}, expected {self.dimension}"
            )

    def insert(self, records: Sequence[MemoryRecord]) -> List[str]:
        """
        Insert memory records in a single batch.

        The whole batch is validated before anything is written, so a
        dimension mismatch in any record leaves the index untouched.

        Args:
            records: Records with caller-assigned ids and embeddings

        Returns:
            Ids of the inserted records, in input order

        Raises:
            StoreError: If validation or the upsert fails
        """
        if not records:
            return []

        for record in records:
            if not record.text.strip():
                raise StoreError(f"Record {record.id} has empty text")
            self._check_dimension(record.embedding, f"Embedding for record {record.id}")

        points = [
            models.PointStruct(
                id=record.id,
                vector=list(record.embedding),
                payload=record.to_payload()
            )
            for record in records
        ]

        try:
            self.client.upsert(
                collection_name=self.collection_name,
                points=points,
                wait=True
            )
        except Exception as e:
            logger.error(f"Error inserting {len(points)} records: {e}")
            raise StoreError(f"Vector insert failed: {e}", cause=e)

        logger.info(f"Inserted {len(points)} records into {self.collection_name}")
        return [record.id for record in records]

    def _build_filter(self, filter_conditions: Optional[Dict[str, Any]]) -> Optional[models.Filter]:
        if not filter_conditions:
            return None

        must_conditions = []
        for key, value in filter_conditions.items():
            if isinstance(value, Modality):
                value = value.value
            payload_key = key if key in _TOP_LEVEL_KEYS else f"metadata.{key}"
            must_conditions.append(
                models.FieldCondition(
                    key=payload_key,
                    match=models.MatchValue(value=value)
                )
            )
        return models.Filter(must=must_conditions)

    def query(
        self,
        vector: Sequence[float],
        top_k: int,
        filter_conditions: Optional[Dict[str, Any]] = None
    ) -> List[VectorMatch]:
        """
        Find the nearest stored records to a vector.

        Args:
            vector: Query embedding
            top_k: Maximum number of matches
            filter_conditions: Metadata equality filter, e.g. {"modality": "audio"}

        Returns:
            At most top_k matches ordered by descending score; may be empty

        Raises:
            StoreError: If the vector has the wrong dimension or the query fails
        """
        if top_k <= 0:
            return []
        self._check_dimension(vector, "Query vector")

        try:
            response = self.client.query_points(
                collection_name=self.collection_name,
                query=list(vector),
                query_filter=self._build_filter(filter_conditions),
                limit=top_k,
                with_payload=True
            )
        except Exception as e:
            logger.error(f"Error querying vector store: {e}")
            raise StoreError(f"Vector query failed: {e}", cause=e)

        matches = [
            VectorMatch(id=str(point.id), score=float(point.score), payload=point.payload or {})
            for point in response.points
        ]
        matches.sort(key=lambda match: match.score, reverse=True)

        logger.debug(f"Query returned {len(matches)} matches")
        return matches[:top_k]

    def delete_by_ids(self, ids: Sequence[str]) -> None:
        """
        Delete records by id.

        Raises:
            StoreError: If the delete fails
        """
        if not ids:
            return

        try:
            self.client.delete(
                collection_name=self.collection_name,
                points_selector=models.PointIdsList(points=list(ids)),
                wait=True
            )
            logger.info(f"Deleted {len(ids)} records from {self.collection_name}")
        except Exception as e:
            logger.error(f"Error deleting records: {e}")
            raise StoreError(f"Vector delete failed: {e}", cause=e)

    def list_ids(self, limit: Optional[int] = None) -> List[str]:
        """
        Enumerate stored record ids by scrolling the collection.

        Args:
            limit: Stop after this many ids (None for all)
        """
        ids: List[str] = []
        offset = None
        page_size = 256

        try:
            while True:
                points, offset = self.client.scroll(
                    collection_name=self.collection_name,
                    limit=page_size,
                    offset=offset,
                    with_payload=False,
                    with_vectors=False
                )
                ids.extend(str(point.id) for point in points)
                if offset is None or (limit is not None and len(ids) >= limit):
                    break
        except Exception as e:
            logger.error(f"Error enumerating records: {e}")
            raise StoreError(f"Vector scroll failed: {e}", cause=e)

        return ids if limit is None else ids[:limit]

    def stats(self) -> StoreStats:
        """
        Get record counts, total and by modality.

        Uses Qdrant's exact count per modality. With ``sample_stats``
        enabled, scrolls at most ``stats_sample_limit`` records instead and
        reports the result as approximate.
        """
        if self.config.sample_stats:
            return self._sampled_stats()

        try:
            total = self.client.count(collection_name=self.collection_name, exact=True).count
            by_modality = {}
            for modality in Modality:
                count = self.client.count(
                    collection_name=self.collection_name,
                    count_filter=self._build_filter({"modality": modality.value}),
                    exact=True
                ).count
                if count:
                    by_modality[modality.value] = count
        except Exception as e:
            logger.error(f"Error getting statistics: {e}")
            raise StoreError(f"Vector count failed: {e}", cause=e)

        return StoreStats(count=total, count_by_modality=by_modality, exact=True)

    def _sampled_stats(self) -> StoreStats:
        try:
            points, _ = self.client.scroll(
                collection_name=self.collection_name,
                limit=self.config.stats_sample_limit,
                with_payload=True,
                with_vectors=False
            )
        except Exception as e:
            logger.error(f"Error sampling statistics: {e}")
            raise StoreError(f"Vector scroll failed: {e}", cause=e)

        by_modality: Dict[str, int] = {}
        for point in points:
            modality = (point.payload or {}).get("modality", Modality.GENERAL.value)
            by_modality[modality] = by_modality.get(modality, 0) + 1

        return StoreStats(count=len(points), count_by_modality=by_modality, exact=False)

    def get_collection_info(self) -> Dict[str, Any]:
        """Get information about the vector store collection."""
        try:
            collection_info = self.client.get_collection(self.collection_name)

            return {
                "collection_name": self.collection_name,
                "points_count": collection_info.points_count,
                "vector_size": collection_info.config.params.vectors.size,
                "distance_metric": str(collection_info.config.params.vectors.distance),
                "status": str(collection_info.status),
            }

        except Exception as e:
            logger.error(f"Error getting collection info: {e}")
            return {}
