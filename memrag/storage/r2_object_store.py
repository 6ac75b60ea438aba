"""
Object store client for raw media uploads.

Uploads bytes to a Cloudflare R2 bucket through the account REST API and
returns the public URL of the stored object. Used opportunistically by the
ingestion pipelines: a failed upload never fails a request.
"""

import logging
import re
import secrets
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import requests

from ..config import ObjectStoreConfig
from ..errors import ConfigError, UploadError
from ..llm.workers_ai_client import classify_failure

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    """Result of a successful upload."""
    url: str
    key: str
    size: int
    content_type: str


class R2ObjectStore:
    """Uploads media to an R2 bucket and builds public asset links."""

    def __init__(
        self,
        config: ObjectStoreConfig,
        account_id: str,
        api_token: str,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the object store client.

        Raises:
            ConfigError: If credentials or the public URL are missing
        """
        if not account_id or not api_token:
            raise ConfigError("Missing Cloudflare credentials for object storage")
        if not config.public_url:
            raise ConfigError("R2_PUBLIC_URL is required to build asset links")

        self.config = config
        self.bucket_url = (
            f"{config.base_url.format(account_id=account_id).rstrip('/')}/{config.bucket_name}/objects"
        )
        self.public_url = config.public_url.rstrip('/')
        self.timeout = config.request_timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_token}"})

        logger.info(f"R2ObjectStore initialized for bucket {config.bucket_name}")

    def generate_key(self, prefix: str, filename: str) -> str:
        """
        Generate a unique object key.

        Format: ``<prefix>/<epoch ms>-<random>-<sanitised name>``.
        """
        timestamp = int(time.time() * 1000)
        random_part = secrets.token_hex(3)
        clean_name = re.sub(r'[^a-zA-Z0-9.-]', '_', filename or 'upload.bin')
        short_name = clean_name[:self.config.max_key_name_length]
        return f"{prefix}/{timestamp}-{random_part}-{short_name}"

    def upload(self, data: bytes, key: str, content_type: Optional[str] = None) -> UploadResult:
        """
        Upload bytes under a key.

        Args:
            data: Object payload
            key: Object key
            content_type: MIME type of the payload

        Returns:
            UploadResult with the public URL

        Raises:
            UploadError: If the request fails or the bucket rejects it
        """
        content_type = content_type or 'application/octet-stream'
        url = f"{self.bucket_url}/{quote(key, safe='')}"

        try:
            response = self.session.put(
                url,
                data=data,
                headers={"Content-Type": content_type},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"R2 upload of {key} failed: {e}")
            raise UploadError(f"R2 upload failed: {e}", cause=e, kind=classify_failure(None, ""))

        if not response.ok:
            body = response.text
            raise UploadError(
                f"R2 upload failed: {response.status_code} {response.reason} - {body[:500]}",
                upstream_status=response.status_code,
                body=body,
                kind=classify_failure(response.status_code, body)
            )

        public_url = f"{self.public_url}/{key}"
        logger.info(f"Uploaded {len(data)} bytes to {public_url}")
        return UploadResult(url=public_url, key=key, size=len(data), content_type=content_type)

