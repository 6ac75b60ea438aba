"""
Workers AI client for hosted inference.

Provides the three model capabilities the pipelines depend on: chat
completion (optionally with interleaved text and images), embedding
generation, and audio transcription. Failures are raised as UpstreamError
with a failure kind decided here, so callers never pattern-match upstream
error prose.
"""

import base64
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..config import InferenceConfig
from ..errors import ConfigError, UpstreamError, UpstreamFailureKind
from ..models import ChatMessage, ContentPart

logger = logging.getLogger(__name__)

# Fragments upstream error bodies use when a payload exceeds a size limit.
_SIZE_LIMIT_MARKERS = (
    "too large",
    "payload too large",
    "request entity too large",
    "exceeds",
    "size limit",
    "maximum size",
)

IMAGE_SYSTEM_PROMPT = (
    "You are a helpful AI assistant that can analyze images and answer "
    "questions about them in detail."
)


@dataclass
class GenerationConfig:
    """Sampling options for chat completion."""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class TranscriptionStatus(Enum):
    """Outcome of a transcription attempt."""
    OK = "ok"
    TOO_LARGE = "too_large"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


@dataclass
class TranscriptionResult:
    """Typed result of a transcription attempt."""
    status: TranscriptionStatus
    text: str = ""
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is TranscriptionStatus.OK


def classify_failure(status_code: Optional[int], body: str) -> UpstreamFailureKind:
    """
    Classify a failed upstream call.

    Args:
        status_code: HTTP status, or None when no response was received
        body: Response body text

    Returns:
        UpstreamFailureKind for the failure
    """
    if status_code is None:
        return UpstreamFailureKind.UNAVAILABLE
    if status_code == 413:
        return UpstreamFailureKind.TOO_LARGE
    if status_code == 429 or status_code >= 500:
        return UpstreamFailureKind.UNAVAILABLE
    lowered = (body or "").lower()
    if status_code == 400 and any(marker in lowered for marker in _SIZE_LIMIT_MARKERS):
        return UpstreamFailureKind.TOO_LARGE
    return UpstreamFailureKind.OTHER


class WorkersAIClient:
    """
    Client for Cloudflare Workers AI models.

    Provides:
    - Chat completion with text or mixed text/image user turns
    - Single and batched embedding generation
    - Audio transcription with typed failure classification
    - Request statistics per capability

    The client holds no per-call state beyond its statistics counters and
    is safe to share across request threads.
    """

    def __init__(self, config: InferenceConfig, session: Optional[requests.Session] = None):
        """
        Initialize Workers AI client.

        Args:
            config: Inference configuration with account id and token
            session: Optional pre-built HTTP session

        Raises:
            ConfigError: If the account id or API token is missing
        """
        if not config.account_id or not config.api_token:
            raise ConfigError("Missing Cloudflare credentials for inference")

        self.config = config
        self.base_url = config.base_url.format(account_id=config.account_id).rstrip('/')
        self.timeout = config.request_timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {config.api_token}"})

        self._stats_lock = threading.Lock()
        self._request_stats = self._empty_stats()

        logger.info(f"WorkersAIClient initialized for chat model {config.chat_model}")

    # ------------------------------------------------------------------
    # Chat completion
    # ------------------------------------------------------------------

    def complete(
        self,
        messages: Sequence[ChatMessage],
        config: Optional[GenerationConfig] = None
    ) -> str:
        """
        Generate a response for a role-tagged conversation.

        Args:
            messages: Ordered system/user/assistant turns
            config: Sampling options; configured defaults apply when unset

        Returns:
            Generated response text

        Raises:
            UpstreamError: If the model returns a non-success status
        """
        config = config or GenerationConfig()
        payload = {
            "messages": [message.to_dict() for message in messages],
            "temperature": config.temperature if config.temperature is not None else self.config.temperature,
            "max_tokens": config.max_tokens if config.max_tokens is not None else self.config.max_tokens,
        }

        result = self._post_json("chat", self.config.chat_model, payload)
        text = self._extract_response_text(result)
        if not text:
            raise UpstreamError(
                "Chat model returned an empty response",
                upstream_status=200,
                kind=UpstreamFailureKind.EMPTY
            )
        return text

    def describe_image(self, image_bytes: bytes, mime_type: str, question: str) -> str:
        """
        Answer a question about an image.

        Args:
            image_bytes: Raw image bytes
            mime_type: Image MIME type used for the data URL
            question: Question to answer about the image

        Returns:
            Model answer
        """
        encoded = base64.b64encode(image_bytes).decode('ascii')
        return self.describe_image_url(f"data:{mime_type};base64,{encoded}", question)

    def describe_image_url(self, image_url: str, question: str) -> str:
        """
        Answer a question about an image given as a URL or data URL.

        Args:
            image_url: ``data:`` URL or public URL of the image
            question: Question to answer about the image

        Returns:
            Model answer
        """
        messages = [
            ChatMessage(role="system", content=IMAGE_SYSTEM_PROMPT),
            ChatMessage(
                role="user",
                content=[ContentPart.text_part(question), ContentPart.image_part(image_url)]
            ),
        ]
        return self.complete(messages)

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def embed(self, text: str) -> List[float]:
        """
        Generate an embedding for a single text.

        Raises:
            UpstreamError: If the request fails or returns no vector
        """
        vectors = self._request_embeddings([text])
        if len(vectors) != 1:
            raise UpstreamError(
                f"Embedding model returned {len(vectors)} vectors for 1 input",
                upstream_status=200,
                kind=UpstreamFailureKind.EMPTY
            )
        return vectors[0]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Generate embeddings for several texts, preserving input order.

        Falls back to sequential single calls when batching is disabled.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text, in input order
        """
        if not texts:
            return []
        if not self.config.batch_embeddings:
            return [self.embed(text) for text in texts]

        vectors = self._request_embeddings(list(texts))
        if len(vectors) != len(texts):
            raise UpstreamError(
                f"Embedding model returned {len(vectors)} vectors for {len(texts)} inputs",
                upstream_status=200,
                kind=UpstreamFailureKind.OTHER
            )
        return vectors

    def _request_embeddings(self, texts: List[str]) -> List[List[float]]:
        result = self._post_json("embedding", self.config.embedding_model, {"text": texts})
        data = result.get("data")
        if data is None and isinstance(result.get("result"), dict):
            data = result["result"].get("data")
        return [list(map(float, vector)) for vector in (data or [])]

    # ------------------------------------------------------------------
    # Transcription
    # ------------------------------------------------------------------

    def transcribe(self, audio_bytes: bytes) -> str:
        """
        Transcribe raw audio bytes.

        Args:
            audio_bytes: Audio payload in any format the model accepts

        Returns:
            Transcript text

        Raises:
            UpstreamError: If upstream rejects the audio or returns no text
        """
        logger.info(f"Transcribing {len(audio_bytes) / 1024 / 1024:.2f}MB of audio")
        result = self._post(
            "transcription",
            self.config.transcription_model,
            data=audio_bytes,
            headers={"Content-Type": "application/octet-stream"}
        )

        text = result.get("text")
        if text is None and isinstance(result.get("result"), dict):
            text = result["result"].get("text")
        if not text or not str(text).strip():
            raise UpstreamError(
                "Transcription model returned an empty transcript",
                upstream_status=200,
                kind=UpstreamFailureKind.EMPTY
            )
        return str(text).strip()

    def try_transcribe(self, audio_bytes: bytes) -> TranscriptionResult:
        """
        Transcribe audio, returning a typed outcome instead of raising.

        Returns:
            TranscriptionResult with OK, TOO_LARGE, UNAVAILABLE or FAILED status
        """
        try:
            return TranscriptionResult(TranscriptionStatus.OK, self.transcribe(audio_bytes))
        except UpstreamError as e:
            status = {
                UpstreamFailureKind.TOO_LARGE: TranscriptionStatus.TOO_LARGE,
                UpstreamFailureKind.UNAVAILABLE: TranscriptionStatus.UNAVAILABLE,
            }.get(e.kind, TranscriptionStatus.FAILED)
            return TranscriptionResult(status, detail=e.message)

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _post_json(self, capability: str, model: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(capability, model, json=payload)

    def _post(self, capability: str, model: str, **kwargs) -> Dict[str, Any]:
        """
        POST to a model endpoint and unwrap the result envelope.

        Raises:
            UpstreamError: On connection failure or non-success status
        """
        url = f"{self.base_url}/{model}"
        start_time = time.time()

        try:
            response = self.session.post(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            self._update_request_stats(capability, time.time() - start_time, False)
            error_msg = f"{capability} request to {model} failed: {e}"
            logger.error(error_msg)
            raise UpstreamError(error_msg, kind=UpstreamFailureKind.UNAVAILABLE, cause=e)

        elapsed = time.time() - start_time
        if not response.ok:
            self._update_request_stats(capability, elapsed, False)
            body = response.text
            kind = classify_failure(response.status_code, body)
            error_msg = f"{capability} request failed: {response.status_code} {response.reason} - {body[:500]}"
            logger.error(error_msg)
            raise UpstreamError(error_msg, upstream_status=response.status_code, body=body, kind=kind)

        try:
            data = response.json()
        except ValueError as e:
            self._update_request_stats(capability, elapsed, False)
            raise UpstreamError(
                f"{capability} response was not valid JSON",
                upstream_status=response.status_code,
                body=response.text,
                cause=e
            )

        self._update_request_stats(capability, elapsed, True)
        logger.debug(f"{capability} request to {model} completed in {elapsed:.2f}s")

        if isinstance(data, dict) and isinstance(data.get("result"), dict):
            return data["result"]
        return data if isinstance(data, dict) else {"data": data}

    @staticmethod
    def _extract_response_text(result: Dict[str, Any]) -> str:
        text = result.get("response")
        if text is None and isinstance(result.get("result"), dict):
            text = result["result"].get("response")
        if isinstance(text, str):
            return text.strip()
        return "" if text is None else str(text)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'average_response_time': 0.0,
            'capabilities': {}
        }

    def _update_request_stats(self, capability: str, response_time: float, success: bool) -> None:
        """Update request performance statistics."""
        with self._stats_lock:
            stats = self._request_stats
            stats['total_requests'] += 1
            if success:
                stats['successful_requests'] += 1
            else:
                stats['failed_requests'] += 1

            total = stats['total_requests']
            stats['average_response_time'] = (
                (stats['average_response_time'] * (total - 1) + response_time) / total
            )

            usage = stats['capabilities'].setdefault(
                capability, {'requests': 0, 'failures': 0, 'avg_response_time': 0.0}
            )
            usage['requests'] += 1
            if not success:
                usage['failures'] += 1
            usage['avg_response_time'] = (
                (usage['avg_response_time'] * (usage['requests'] - 1) + response_time)
                / usage['requests']
            )

    def get_request_stats(self) -> Dict[str, Any]:
        """
        Get request performance statistics.

        Returns:
            Dictionary containing performance metrics
        """
        with self._stats_lock:
            return {
                **self._request_stats,
                'capabilities': {k: dict(v) for k, v in self._request_stats['capabilities'].items()}
            }

    def clear_stats(self) -> None:
        """Clear request statistics."""
        with self._stats_lock:
            self._request_stats = self._empty_stats()
        logger.info("Request statistics cleared")
