"""
Unit tests for configuration loading.

Tests defaults, environment overrides, validation, and credential checks.
"""

from dataclasses import fields
import os

import pytest

from memrag.config import APIConfig, ConfigManager, SystemConfig
from memrag.errors import ConfigError

ENV_VARS = [
    "CLOUDFLARE_ACCOUNT_ID", "CLOUDFLARE_API_TOKEN", "LLM_TEMPERATURE", "QDRANT_URL",
    "QDRANT_API_KEY", "QDRANT_PATH", "QDRANT_COLLECTION", "EMBEDDING_DIMENSION", "R2_BUCKET",
    "R2_PUBLIC_URL", "MEMORY_TOP_K", "MAX_AUDIO_SIZE_MB", "API_HOST", "API_PORT", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """Isolate each test from the real environment and from values load_dotenv sets."""
    saved = dict(os.environ)
    for name in ENV_VARS:
        os.environ.pop(name, None)
    monkeypatch.chdir(tmp_path)
    yield
    os.environ.clear()
    os.environ.update(saved)


def make_manager(tmp_path, **env):
    env_file = tmp_path / "test.env"
    env_file.write_text("".join(f"{key}={value}\n" for key, value in env.items()))
    return ConfigManager(str(env_file))


class TestSystemConfig:
    """Test cases for configuration defaults and credential checks."""

    def test_defaults(self):
        config = SystemConfig()
        assert config.inference.chat_model == "@cf/meta/llama-4-scout-17b-16e-instruct"
        assert config.inference.embedding_model == "@cf/baai/bge-base-en-v1.5"
        assert config.vector_store.embedding_dimension == 768
        assert config.media.max_transcription_bytes == 5 * 1024 * 1024
        assert config.media.max_video_frames == 5
        assert not config.uploads_enabled

    def test_require_credentials(self):
        config = SystemConfig()
        with pytest.raises(ConfigError) as exc_info:
            config.require_credentials()
        assert "CLOUDFLARE_ACCOUNT_ID" in exc_info.value.message
        assert "CLOUDFLARE_API_TOKEN" in exc_info.value.message

        config.inference.account_id = "acct"
        config.inference.api_token = "token"
        config.require_credentials()

    def test_api_settings_are_the_ones_the_server_reads(self):
        assert [f.name for f in fields(APIConfig)] == ["host", "port", "cors_enabled", "cors_origins"]
        assert not hasattr(ConfigManager, "update_config")


class TestConfigManager:
    """Test cases for ConfigManager."""

    def test_env_file_overrides(self, tmp_path):
        manager = make_manager(
            tmp_path,
            CLOUDFLARE_ACCOUNT_ID="acct",
            CLOUDFLARE_API_TOKEN="token",
            QDRANT_COLLECTION="custom",
            EMBEDDING_DIMENSION="384",
            R2_PUBLIC_URL="https://cdn.example.com/",
            MAX_AUDIO_SIZE_MB="2",
            API_PORT="9000",
            LOG_LEVEL="debug",
        )

        config = manager.load_config()

        assert config.inference.account_id == "acct"
        assert config.vector_store.collection_name == "custom"
        assert config.vector_store.embedding_dimension == 384
        assert config.object_store.public_url == "https://cdn.example.com"
        assert config.uploads_enabled
        assert config.media.max_transcription_bytes == 2 * 1024 * 1024
        assert config.api.port == 9000
        assert config.logging.level == "DEBUG"

    def test_config_is_cached(self, tmp_path):
        manager = make_manager(tmp_path)
        assert manager.load_config() is manager.get_config()

    def test_invalid_temperature(self, tmp_path):
        manager = make_manager(tmp_path, LLM_TEMPERATURE="3.5")
        with pytest.raises(ConfigError):
            manager.load_config()

    def test_top_k_above_maximum(self, tmp_path):
        manager = make_manager(tmp_path, MEMORY_TOP_K="500")
        with pytest.raises(ConfigError):
            manager.load_config()

    def test_creates_log_directory(self, tmp_path):
        manager = make_manager(tmp_path)
        manager.load_config()
        assert (tmp_path / "logs").is_dir()
