"""
Service wiring.

Builds the long-lived collaborators once per process: the inference
gateway, vector store, object store, memory service, and the three media
pipelines. The API server and the CLI both obtain their services here.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import SystemConfig
from .llm.workers_ai_client import WorkersAIClient
from .processors import AudioPipeline, ImagePipeline, VideoPipeline
from .retrieval.memory_service import MemoryService
from .retrieval.vectordb import QdrantVectorStore
from .storage.r2_object_store import R2ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Holds the configured services shared across requests."""
    config: SystemConfig
    gateway: WorkersAIClient
    vector_store: QdrantVectorStore
    memory: MemoryService
    image: ImagePipeline
    audio: AudioPipeline
    video: VideoPipeline
    object_store: Optional[R2ObjectStore] = None

    @classmethod
    def from_config(cls, config: SystemConfig) -> "ServiceContainer":
        """
        Construct every service from configuration.

        Raises:
            ConfigError: If Cloudflare credentials are missing
            StoreError: If the vector collection cannot be prepared
        """
        config.require_credentials()

        gateway = WorkersAIClient(config.inference)
        vector_store = QdrantVectorStore(config.vector_store)
        memory = MemoryService(gateway, vector_store, config.memory)

        object_store = None
        if config.uploads_enabled:
            object_store = R2ObjectStore(
                config.object_store,
                config.inference.account_id,
                config.inference.api_token
            )
        else:
            logger.warning("R2_PUBLIC_URL not set, media uploads are disabled")

        return cls(
            config=config,
            gateway=gateway,
            vector_store=vector_store,
            memory=memory,
            image=ImagePipeline(gateway, memory, config.media, object_store),
            audio=AudioPipeline(gateway, memory, config.media, object_store),
            video=VideoPipeline(gateway, memory, config.media, object_store),
            object_store=object_store
        )
