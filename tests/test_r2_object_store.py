"""
Unit tests for R2ObjectStore.

Tests key generation and uploads against a mocked HTTP session.
"""

import re
from unittest.mock import Mock

import pytest
import requests

from memrag.config import ObjectStoreConfig
from memrag.errors import ConfigError, UploadError, UpstreamFailureKind
from memrag.storage.r2_object_store import R2ObjectStore


class TestR2ObjectStore:
    """Test suite for R2ObjectStore."""

    @pytest.fixture
    def config(self):
        return ObjectStoreConfig(public_url="https://cdn.example.com/")

    @pytest.fixture
    def session(self):
        return Mock()

    @pytest.fixture
    def store(self, config, session):
        return R2ObjectStore(config, "acct", "token", session=session)

    def test_requires_credentials(self, config):
        with pytest.raises(ConfigError):
            R2ObjectStore(config, "", "token", session=Mock())

    def test_requires_public_url(self):
        with pytest.raises(ConfigError):
            R2ObjectStore(ObjectStoreConfig(), "acct", "token", session=Mock())

    def test_generate_key(self, store):
        key = store.generate_key("images", "my photo (1).png")
        assert re.fullmatch(r"images/\d+-[0-9a-f]{6}-my_photo__1_\.png", key)

    def test_generate_key_truncates_name(self, store):
        key = store.generate_key("audio", "a" * 80 + ".mp3")
        assert len(key.split("-", 2)[2]) == 50

    def test_generate_key_unique(self, store):
        assert store.generate_key("images", "x.png") != store.generate_key("images", "x.png")

    def test_upload(self, store, session):
        session.put.return_value = Mock(ok=True, status_code=200)

        result = store.upload(b"data", "images/1-abc-x.png", "image/png")

        assert result.url == "https://cdn.example.com/images/1-abc-x.png"
        assert result.size == 4
        url = session.put.call_args[0][0]
        assert url == (
            "https://api.cloudflare.com/client/v4/accounts/acct/r2/buckets/"
            "multimodalai/objects/images%2F1-abc-x.png"
        )
        assert session.put.call_args[1]["headers"] == {"Content-Type": "image/png"}

    def test_upload_rejected(self, store, session):
        session.put.return_value = Mock(ok=False, status_code=403, reason="Forbidden", text="denied")

        with pytest.raises(UploadError) as exc_info:
            store.upload(b"data", "images/x.png")
        assert exc_info.value.upstream_status == 403
        assert "403 Forbidden - denied" in exc_info.value.message

    def test_upload_connection_error(self, store, session):
        session.put.side_effect = requests.ConnectionError("refused")

        with pytest.raises(UploadError) as exc_info:
            store.upload(b"data", "images/x.png")
        assert exc_info.value.kind is UpstreamFailureKind.UNAVAILABLE
