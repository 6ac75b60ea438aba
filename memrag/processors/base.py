"""
Base class for media ingestion pipelines.

Defines the stages every modality shares: a best-effort upload of the raw
media, model invocation (modality specific), and optional best-effort
persistence of the interaction as a memory. Failures of the two
best-effort stages are recorded in a SideEffectStatus, never raised.
"""

from abc import ABC, abstractmethod
import logging
from typing import Any, Dict, Optional

from ..config import MediaConfig
from ..errors import MemoryServiceError, UpstreamError, ValidationError
from ..llm.workers_ai_client import WorkersAIClient
from ..models import MediaAsset, Modality, SideEffectStatus
from ..retrieval.memory_service import MemoryService
from ..storage.r2_object_store import R2ObjectStore

logger = logging.getLogger(__name__)


class MediaPipeline(ABC):
    """
    Abstract base class for all ingestion pipelines.

    Each modality (image, audio, video) implements ``ingest`` on top of
    the shared upload and persistence stages.
    """

    upload_prefix: str = "uploads"

    def __init__(
        self,
        gateway: WorkersAIClient,
        memory: MemoryService,
        config: MediaConfig,
        object_store: Optional[R2ObjectStore] = None
    ):
        self.gateway = gateway
        self.memory = memory
        self.config = config
        self.object_store = object_store

    @abstractmethod
    def get_modality(self) -> Modality:
        """
        Get the modality handled by this pipeline.

        Returns:
            Modality enum value
        """
        pass

    @abstractmethod
    def ingest(self, *args, **kwargs):
        """Run the pipeline and return its structured result."""
        pass

    def upload(self, asset: MediaAsset, side_effects: SideEffectStatus) -> Optional[str]:
        """
        Upload the raw media, best-effort.

        Args:
            asset: Media to upload
            side_effects: Status updated with the outcome

        Returns:
            Public URL of the uploaded object, or None when upload is
            disabled or failed
        """
        if self.object_store is None:
            logger.debug("Object store not configured, skipping upload")
            return None

        try:
            key = self.object_store.generate_key(self.upload_prefix, asset.name)
            result = self.object_store.upload(asset.data, key, asset.mime_type)
        except UpstreamError as e:
            logger.error(f"Upload of {asset.name} failed, continuing without URL: {e}")
            side_effects.upload_error = e.message
            return None

        side_effects.uploaded = True
        return result.url

    def persist(
        self,
        text: str,
        metadata: Dict[str, Any],
        side_effects: SideEffectStatus
    ) -> Optional[str]:
        """
        Store the interaction as a memory, best-effort.

        Args:
            text: Composite memory text
            metadata: Modality-specific metadata
            side_effects: Status updated with the outcome

        Returns:
            Memory id, or None when storing failed
        """
        try:
            memory_id = self.memory.store(text, self.get_modality(), metadata)
        except (MemoryServiceError, ValidationError) as e:
            logger.error(f"Failed to store {self.get_modality().value} memory: {e}")
            side_effects.memory_error = e.message
            return None

        side_effects.memory_saved = True
        return memory_id

    def build_memory_text(self, question: str, answer: str) -> str:
        """Composite memory text: ``<Modality> Analysis - Q: <question> A: <answer>``."""
        label = self.get_modality().value.capitalize()
        return f"{label} Analysis - Q: {question} A: {answer}"

    @staticmethod
    def require_question(question: Optional[str]) -> str:
        if not question or not question.strip():
            raise ValidationError("Missing question")
        return question.strip()
