"""
Configuration management system for the memory-augmented multimodal backend.

Provides dataclasses for all system configurations including inference,
vector storage, object storage, memory retrieval, media limits, and logging.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import os
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigError


@dataclass
class InferenceConfig:
    """Configuration for the hosted inference models."""
    account_id: Optional[str] = None
    api_token: Optional[str] = None
    base_url: str = "https://api.cloudflare.com/client/v4/accounts/{account_id}/ai/run"
    chat_model: str = "@cf/meta/llama-4-scout-17b-16e-instruct"
    embedding_model: str = "@cf/baai/bge-base-en-v1.5"
    transcription_model: str = "@cf/openai/whisper"
    temperature: float = 0.7
    max_tokens: int = 2048
    request_timeout_seconds: int = 60
    batch_embeddings: bool = True


@dataclass
class VectorStoreConfig:
    """Configuration for the vector index holding memories."""
    url: Optional[str] = None
    api_key: Optional[str] = None
    path: Optional[str] = None  # local on-disk storage when no url is set
    collection_name: str = "multimodal_memory"
    embedding_dimension: int = 768
    sample_stats: bool = False
    stats_sample_limit: int = 1000
    delete_batch_size: int = 256


@dataclass
class ObjectStoreConfig:
    """Configuration for raw media uploads."""
    base_url: str = "https://api.cloudflare.com/client/v4/accounts/{account_id}/r2/buckets"
    bucket_name: str = "multimodalai"
    public_url: Optional[str] = None
    request_timeout_seconds: int = 120
    max_key_name_length: int = 50


@dataclass
class MemoryConfig:
    """Configuration for retrieval and prompt assembly."""
    default_top_k: int = 5
    max_top_k: int = 50
    max_memory_chars: int = 1000
    max_context_chars: int = 6000
    max_history_turns: int = 20
    system_prompt: str = (
        "You are a helpful AI assistant with access to the user's previous "
        "interactions and uploaded content."
    )
    context_prompt_template: str = """{system_prompt} Use the following relevant memories to answer accurately and helpfully.

Relevant memories:
{context}"""


@dataclass
class MediaConfig:
    """Configuration for media ingestion pipelines."""
    max_transcription_bytes: int = 5 * 1024 * 1024
    max_video_frames: int = 5
    frame_interval_seconds: float = 5.0
    frame_max_width: int = 1280
    frame_max_height: int = 720
    frame_jpeg_quality: int = 70
    frame_question: str = "Describe what you see in this video frame in detail."
    supported_image_types: List[str] = field(default_factory=lambda: [
        'image/jpeg', 'image/png', 'image/gif', 'image/webp', 'image/bmp'
    ])


@dataclass
class APIConfig:
    """Configuration for the REST API layer."""
    host: str = "localhost"
    port: int = 8000
    cors_enabled: bool = True
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class LoggingConfig:
    """Configuration for system logging."""
    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = "logs/memrag.log"
    max_file_size_mb: int = 10
    backup_count: int = 5
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    enable_console_logging: bool = True
    enable_file_logging: bool = True


@dataclass
class SystemConfig:
    """Main system configuration containing all subsystem configs."""
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    object_store: ObjectStoreConfig = field(default_factory=ObjectStoreConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    media: MediaConfig = field(default_factory=MediaConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    auto_create_directories: bool = True

    def require_credentials(self) -> None:
        """
        Ensure the credentials every request depends on are present.

        Raises:
            ConfigError: If the inference account id or token is missing
        """
        missing = []
        if not self.inference.account_id:
            missing.append("CLOUDFLARE_ACCOUNT_ID")
        if not self.inference.api_token:
            missing.append("CLOUDFLARE_API_TOKEN")
        if missing:
            raise ConfigError(f"Missing Cloudflare credentials: {', '.join(missing)}")

    @property
    def uploads_enabled(self) -> bool:
        """Uploads need a public base URL to build asset links."""
        return bool(self.object_store.public_url)


class ConfigManager:
    """
    Manages system configuration loading, validation, and updates.

    Supports loading from a dotenv file and environment variables
    with validation.
    """

    def __init__(self, env_file: Optional[str] = None):
        self.env_file = env_file
        self._config: Optional[SystemConfig] = None

    def load_config(self) -> SystemConfig:
        """Load configuration from the dotenv file and environment variables."""
        if self._config is None:
            load_dotenv(self.env_file)
            self._config = SystemConfig()
            self._apply_environment_overrides()
            self._validate_config()
            self._create_directories()
        return self._config

    def _apply_environment_overrides(self) -> None:
        """Apply configuration overrides from environment variables."""
        if not self._config:
            return

        # Inference credentials
        if os.getenv("CLOUDFLARE_ACCOUNT_ID"):
            self._config.inference.account_id = os.getenv("CLOUDFLARE_ACCOUNT_ID")
        if os.getenv("CLOUDFLARE_API_TOKEN"):
            self._config.inference.api_token = os.getenv("CLOUDFLARE_API_TOKEN")
        if os.getenv("LLM_TEMPERATURE"):
            self._config.inference.temperature = float(os.getenv("LLM_TEMPERATURE"))

        # Vector store
        if os.getenv("QDRANT_URL"):
            self._config.vector_store.url = os.getenv("QDRANT_URL")
        if os.getenv("QDRANT_API_KEY"):
            self._config.vector_store.api_key = os.getenv("QDRANT_API_KEY")
        if os.getenv("QDRANT_PATH"):
            self._config.vector_store.path = os.getenv("QDRANT_PATH")
        if os.getenv("QDRANT_COLLECTION"):
            self._config.vector_store.collection_name = os.getenv("QDRANT_COLLECTION")
        if os.getenv("EMBEDDING_DIMENSION"):
            self._config.vector_store.embedding_dimension = int(os.getenv("EMBEDDING_DIMENSION"))

        # Object store
        if os.getenv("R2_BUCKET"):
            self._config.object_store.bucket_name = os.getenv("R2_BUCKET")
        if os.getenv("R2_PUBLIC_URL"):
            self._config.object_store.public_url = os.getenv("R2_PUBLIC_URL").rstrip('/')

        # Memory and media
        if os.getenv("MEMORY_TOP_K"):
            self._config.memory.default_top_k = int(os.getenv("MEMORY_TOP_K"))
        if os.getenv("MAX_AUDIO_SIZE_MB"):
            self._config.media.max_transcription_bytes = int(
                float(os.getenv("MAX_AUDIO_SIZE_MB")) * 1024 * 1024
            )

        # API and logging
        if os.getenv("API_HOST"):
            self._config.api.host = os.getenv("API_HOST")
        if os.getenv("API_PORT"):
            self._config.api.port = int(os.getenv("API_PORT"))
        if os.getenv("LOG_LEVEL"):
            self._config.logging.level = os.getenv("LOG_LEVEL").upper()

    def _validate_config(self) -> None:
        """Validate configuration values and constraints."""
        if not self._config:
            return

        if self._config.vector_store.embedding_dimension <= 0:
            raise ConfigError("embedding_dimension must be positive")

        if self._config.inference.temperature < 0 or self._config.inference.temperature > 2:
            raise ConfigError("temperature must be between 0 and 2")

        if self._config.memory.default_top_k < 0:
            raise ConfigError("default_top_k cannot be negative")
        if self._config.memory.default_top_k > self._config.memory.max_top_k:
            raise ConfigError("default_top_k cannot exceed max_top_k")

        if self._config.media.max_transcription_bytes <= 0:
            raise ConfigError("max_transcription_bytes must be positive")
        if not 1 <= self._config.media.max_video_frames <= 10:
            raise ConfigError("max_video_frames must be between 1 and 10")

    def _create_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        if not self._config or not self._config.auto_create_directories:
            return

        directories = []
        if self._config.vector_store.path:
            directories.append(self._config.vector_store.path)

        if self._config.logging.enable_file_logging and self._config.logging.log_file:
            directories.append(str(Path(self._config.logging.log_file).parent))

        for directory in directories:
            Path(directory).mkdir(parents=True, exist_ok=True)

    def get_config(self) -> SystemConfig:
        """Get the current system configuration."""
        if self._config is None:
            return self.load_config()
        return self._config
