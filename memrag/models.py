"""
Core data models for the memory-augmented multimodal backend.

This module defines the fundamental data structures used throughout
the system for representing memories, retrieval context, uploaded media,
chat messages, and the structured results of each ingestion pipeline.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import logging
import threading
import time

from .errors import ValidationError

logger = logging.getLogger(__name__)


class Modality(Enum):
    """Enumeration of supported memory modalities."""
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: Union[str, "Modality"]) -> "Modality":
        """Parse a modality name, raising ValidationError for unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValidationError(f"Invalid memory type: {value!r}. Expected one of: {allowed}")


MetadataValue = Union[str, int, float, bool]

# Keys owned by the record itself; extension metadata never overrides them.
CORE_FIELDS = frozenset({"id", "text", "modality", "type", "timestamp", "score"})


def clean_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, MetadataValue]:
    """
    Validate an open metadata map into the typed extension map.

    Args:
        metadata: Caller-supplied key-value pairs

    Returns:
        Copy containing only primitive values, with None values and
        core-field keys dropped

    Raises:
        ValidationError: If a value is not a primitive
    """
    cleaned: Dict[str, MetadataValue] = {}
    for key, value in (metadata or {}).items():
        if value is None:
            continue
        if key in CORE_FIELDS:
            logger.warning(f"Ignoring metadata key '{key}', it is set by the memory store")
            continue
        if not isinstance(value, (str, int, float, bool)):
            raise ValidationError(
                f"Metadata value for '{key}' must be a string, number, or boolean, "
                f"got {type(value).__name__}"
            )
        cleaned[str(key)] = value
    return cleaned


class MonotonicClock:
    """
    Millisecond wall clock that never goes backwards within a process.

    If the system clock steps back, the last issued value is repeated
    plus one so timestamps stay strictly increasing.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._last = 0

    def now_ms(self) -> int:
        with self._lock:
            current = int(time.time() * 1000)
            if current <= self._last:
                current = self._last + 1
            self._last = current
            return current


@dataclass(frozen=True)
class MemoryRecord:
    """
    A persisted unit of memory.

    The embedding is computed from ``text`` before persistence; records
    are never updated in place.
    """
    id: str
    text: str
    modality: Modality
    embedding: List[float]
    timestamp: int
    metadata: Dict[str, MetadataValue] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Payload stored alongside the vector."""
        return {
            "text": self.text,
            "modality": self.modality.value,
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }


@dataclass
class VectorMatch:
    """Internal search result from the vector index."""
    id: str
    score: float
    payload: Dict[str, Any]


@dataclass
class RetrievedMemory:
    """A memory returned by retrieval, with its transient relevance score."""
    id: str
    text: str
    modality: Modality
    score: float
    timestamp: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def relevance_percent(self) -> int:
        return int(round(self.score * 100))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "type": self.modality.value,
            "score": self.score,
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }


@dataclass
class QueryContext:
    """Ordered retrieval results for one chat turn; never persisted."""
    memories: List[RetrievedMemory] = field(default_factory=list)
    query: str = ""

    def __len__(self) -> int:
        return len(self.memories)

    @property
    def is_empty(self) -> bool:
        return not self.memories

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relevant_memories": [memory.to_dict() for memory in self.memories],
            "count": len(self.memories),
        }


@dataclass
class StoreStats:
    """Aggregate statistics reported by the vector store."""
    count: int
    count_by_modality: Dict[str, int] = field(default_factory=dict)
    exact: bool = True


@dataclass
class MediaAsset:
    """Raw uploaded media, owned by the pipeline invocation that received it."""
    data: bytes
    mime_type: str
    name: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def size_mb(self) -> float:
        return self.size_bytes / 1024 / 1024


@dataclass
class VideoFrame:
    """A sampled video frame, JPEG-encoded as base64."""
    timestamp: float
    base64: str


@dataclass
class ContentPart:
    """One segment of a structured user message: text or an image URL."""
    type: str  # "text" or "image_url"
    text: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def text_part(cls, text: str) -> "ContentPart":
        return cls(type="text", text=text)

    @classmethod
    def image_part(cls, url: str) -> "ContentPart":
        return cls(type="image_url", image_url=url)

    def to_dict(self) -> Dict[str, Any]:
        if self.type == "image_url":
            return {"type": "image_url", "image_url": {"url": self.image_url}}
        return {"type": "text", "text": self.text}


@dataclass
class ChatMessage:
    """A role-tagged conversation turn."""
    role: str  # system, user, assistant
    content: Union[str, List[ContentPart]]

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [part.to_dict() for part in self.content]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        """Build a plain-text turn from a client-supplied history entry."""
        role = data.get("role")
        if role not in ("user", "assistant", "system"):
            raise ValidationError(f"Invalid history role: {role!r}")
        content = data.get("content")
        if not isinstance(content, str):
            raise ValidationError("History content must be a string")
        return cls(role=role, content=content)


@dataclass
class ChatResult:
    """Response of a memory-augmented chat turn."""
    response: str
    context: QueryContext
    memory_saved: bool = False


@dataclass
class SideEffectStatus:
    """Outcome of the best-effort stages of an ingestion pipeline."""
    uploaded: bool = False
    upload_error: Optional[str] = None
    memory_saved: bool = False
    memory_error: Optional[str] = None


@dataclass
class ImageResult:
    """Result of the image pipeline."""
    response: str
    image_url: Optional[str] = None
    side_effects: SideEffectStatus = field(default_factory=SideEffectStatus)

    @property
    def memory_saved(self) -> bool:
        return self.side_effects.memory_saved


@dataclass
class AudioResult:
    """Result of the audio pipeline."""
    transcript: str
    file_size_bytes: int
    transcription_skipped: bool
    transcript_usable: bool
    answer: Optional[str] = None
    audio_url: Optional[str] = None
    side_effects: SideEffectStatus = field(default_factory=SideEffectStatus)

    @property
    def memory_saved(self) -> bool:
        return self.side_effects.memory_saved

    @property
    def file_size_mb(self) -> str:
        return f"{self.file_size_bytes / 1024 / 1024:.2f}"


@dataclass
class FrameAnalysis:
    """Description of a single sampled video frame."""
    timestamp: float
    description: str
    failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "description": self.description}


@dataclass
class VideoResult:
    """Result of the video pipeline."""
    answer: str
    frame_analyses: List[FrameAnalysis]
    audio_transcript: Optional[str] = None
    video_url: Optional[str] = None
    side_effects: SideEffectStatus = field(default_factory=SideEffectStatus)

    @property
    def memory_saved(self) -> bool:
        return self.side_effects.memory_saved


@dataclass
class MemoryStats:
    """Memory totals as reported to clients."""
    total_memories: int
    by_type: Dict[str, int] = field(default_factory=dict)
    exact: bool = True


@dataclass
class ClearResult:
    """Outcome of a best-effort bulk clear."""
    deleted: int
    supported: bool = True
    message: str = ""
