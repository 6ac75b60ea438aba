"""
Audio ingestion pipeline.

Uploads the audio, transcribes it when it is under the size threshold, and
answers an optional question against the transcript. When transcription is
skipped or fails, a placeholder transcript explains why; placeholders are
recognisable so later stages never treat them as speech.
"""

import logging
import re
from typing import Optional, Tuple

from ..errors import UpstreamError, ValidationError
from ..llm.workers_ai_client import TranscriptionStatus
from ..models import AudioResult, ChatMessage, MediaAsset, Modality, SideEffectStatus
from .base import MediaPipeline

logger = logging.getLogger(__name__)


SKIPPED_TRANSCRIPT = (
    "[Transcription skipped: the audio file is {size_mb:.2f}MB, which exceeds the "
    "{limit_mb:.2f}MB transcription limit. The file was still accepted; use a smaller "
    "audio file for transcription.]"
)
TOO_LARGE_TRANSCRIPT = (
    "[Transcription failed: the transcription service rejected the {size_mb:.2f}MB "
    "audio file as too large. Please use a smaller audio file.]"
)
FAILED_TRANSCRIPT = (
    "[Transcription failed: please try a different audio format or a smaller file.]"
)

PLACEHOLDER_PATTERN = re.compile(r"^\[Transcription (skipped|failed)\b")

ANSWER_SYSTEM_PROMPT = (
    "You are analyzing an audio transcription. Answer questions based on the "
    "transcript accurately and concisely."
)
UNUSABLE_TRANSCRIPT_ANSWER = (
    "Cannot answer the question because transcription was skipped or failed."
)
ANSWER_FAILED = "Failed to generate an answer based on the transcript."


def is_usable_transcript(transcript: Optional[str]) -> bool:
    """True when an externally supplied transcript is real speech rather than a placeholder."""
    if not transcript or not transcript.strip():
        return False
    return PLACEHOLDER_PATTERN.match(transcript.strip()) is None


class AudioPipeline(MediaPipeline):
    """
    Pipeline for audio transcription and question answering.

    Never raises for upstream failures: transcription problems become
    placeholder transcripts and answer failures become fallback answers.
    """

    upload_prefix = "audio"

    def get_modality(self) -> Modality:
        return Modality.AUDIO

    def should_skip_transcription(self, size_bytes: int) -> bool:
        """Files strictly larger than the threshold are not sent for transcription."""
        return size_bytes > self.config.max_transcription_bytes

    def transcribe(self, asset: MediaAsset) -> Tuple[str, TranscriptionStatus]:
        """
        Transcribe the asset, substituting a placeholder on failure.

        Returns:
            Transcript text or one of the failure placeholders, and the
            transcription status
        """
        result = self.gateway.try_transcribe(asset.data)
        if result.ok:
            logger.info(f"Transcription complete ({len(result.text)} characters)")
            return result.text, result.status

        logger.warning(f"Transcription of {asset.name} failed ({result.status.value}): {result.detail}")
        if result.status is TranscriptionStatus.TOO_LARGE:
            return TOO_LARGE_TRANSCRIPT.format(size_mb=asset.size_mb), result.status
        return FAILED_TRANSCRIPT, result.status

    def answer_question(self, transcript: str, question: str) -> str:
        """Answer a question against a usable transcript, with a fallback answer on failure."""
        try:
            return self.gateway.complete([
                ChatMessage(role="system", content=ANSWER_SYSTEM_PROMPT),
                ChatMessage(role="user", content=f"Transcript: {transcript}\n\nQuestion: {question}"),
            ])
        except UpstreamError as e:
            logger.error(f"Failed to answer question from transcript: {e}")
            return ANSWER_FAILED

    def ingest(
        self,
        asset: MediaAsset,
        question: Optional[str] = None,
        save_to_memory: bool = False
    ) -> AudioResult:
        """
        Transcribe audio and optionally answer a question about it.

        Args:
            asset: Uploaded audio
            question: Optional question about the audio
            save_to_memory: Remember the transcript or question and answer

        Returns:
            AudioResult with transcript, optional answer, and side-effect status

        Raises:
            ValidationError: If the audio is missing
        """
        if asset is None or not asset.data:
            raise ValidationError("Missing audio file")
        question = question.strip() if question and question.strip() else None

        logger.info(f"Audio pipeline: {asset.name} ({asset.size_mb:.2f}MB)")
        side_effects = SideEffectStatus()

        audio_url = self.upload(asset, side_effects)

        skipped = self.should_skip_transcription(asset.size_bytes)
        answer: Optional[str] = None
        usable = False

        if skipped:
            limit_mb = self.config.max_transcription_bytes / 1024 / 1024
            logger.warning(
                f"Audio too large ({asset.size_mb:.2f}MB > {limit_mb:.2f}MB), skipping transcription"
            )
            transcript = SKIPPED_TRANSCRIPT.format(size_mb=asset.size_mb, limit_mb=limit_mb)
            if question:
                location = f" and stored at {audio_url}" if audio_url else ""
                answer = (
                    f"The audio file was received{location}, but it is too large for automatic "
                    f"transcription ({asset.size_mb:.2f}MB > {limit_mb:.2f}MB limit). "
                    f"Please use an audio file smaller than {limit_mb:.2f}MB to ask questions about it."
                )
        else:
            transcript, status = self.transcribe(asset)
            usable = status is TranscriptionStatus.OK

        if question and answer is None:
            answer = self.answer_question(transcript, question) if usable else UNUSABLE_TRANSCRIPT_ANSWER

        if save_to_memory:
            if question:
                text = self.build_memory_text(question, answer)
            else:
                text = f"Audio Transcription: {transcript}"
            self.persist(
                text,
                {
                    "transcript": transcript,
                    "question": question,
                    "answer": answer,
                    "audio_url": audio_url,
                    "audio_name": asset.name,
                    "audio_type": asset.mime_type,
                    "audio_size": asset.size_bytes,
                    "transcription_skipped": skipped,
                },
                side_effects
            )

        return AudioResult(
            transcript=transcript,
            file_size_bytes=asset.size_bytes,
            transcription_skipped=skipped,
            transcript_usable=usable,
            answer=answer,
            audio_url=audio_url,
            side_effects=side_effects
        )
