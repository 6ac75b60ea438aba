"""
Video ingestion pipeline.

Describes sampled frames with the vision model in parallel, combines the
timestamped descriptions with an optional audio transcript into a single
context block, and answers the question against it.
"""

from concurrent.futures import ThreadPoolExecutor
import logging
import os
from typing import List, Optional

from ..config import MediaConfig
from ..errors import UpstreamError, ValidationError
from ..llm.workers_ai_client import WorkersAIClient
from ..models import (
    ChatMessage, FrameAnalysis, MediaAsset, Modality, SideEffectStatus, VideoFrame, VideoResult
)
from ..retrieval.memory_service import MemoryService
from ..storage.r2_object_store import R2ObjectStore
from .base import MediaPipeline
from .frame_extractor import FrameExtractor

logger = logging.getLogger(__name__)

FRAME_PLACEHOLDER = "No description available"
NO_AUDIO_PLACEHOLDER = "No audio available"

VIDEO_SYSTEM_PROMPT = (
    "You are analyzing a video. Use the frame descriptions and audio transcript "
    "to answer questions accurately."
)


def frame_data_url(frame: VideoFrame) -> str:
    if frame.base64.startswith("data:"):
        return frame.base64
    return f"data:image/jpeg;base64,{frame.base64}"


class VideoPipeline(MediaPipeline):
    """
    Pipeline for video questions.

    A frame whose description fails gets a placeholder; the final answer
    call is the only model failure that propagates.
    """

    upload_prefix = "videos"
    max_workers = 5

    def __init__(
        self,
        gateway: WorkersAIClient,
        memory: MemoryService,
        config: MediaConfig,
        object_store: Optional[R2ObjectStore] = None,
        frame_extractor: Optional[FrameExtractor] = None
    ):
        super().__init__(gateway, memory, config, object_store)
        self.frame_extractor = frame_extractor or FrameExtractor(config)

    def get_modality(self) -> Modality:
        return Modality.VIDEO

    def describe_frames(self, frames: List[VideoFrame]) -> List[FrameAnalysis]:
        """
        Describe frames concurrently, preserving input order.

        Args:
            frames: Frames to describe, already limited to the frame cap

        Returns:
            One FrameAnalysis per frame
        """
        if not frames:
            return []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(frames))) as executor:
            futures = [executor.submit(self._describe_frame, frame) for frame in frames]
            return [future.result() for future in futures]

    def _describe_frame(self, frame: VideoFrame) -> FrameAnalysis:
        try:
            description = self.gateway.describe_image_url(frame_data_url(frame), self.config.frame_question)
        except UpstreamError as e:
            logger.warning(f"Frame at {frame.timestamp:.1f}s could not be described: {e}")
            return FrameAnalysis(timestamp=frame.timestamp, description=FRAME_PLACEHOLDER, failed=True)
        return FrameAnalysis(timestamp=frame.timestamp, description=description)

    @staticmethod
    def build_context(analyses: List[FrameAnalysis], audio_transcript: Optional[str]) -> str:
        """Combine timestamped frame descriptions and the transcript into one block."""
        frame_lines = "\n".join(f"[{a.timestamp:.1f}s]: {a.description}" for a in analyses)
        return (
            f"Video Analysis:\n{frame_lines}\n\n"
            f"Audio Transcript:\n{audio_transcript or NO_AUDIO_PLACEHOLDER}"
        )

    def ingest(
        self,
        question: Optional[str],
        frames: Optional[List[VideoFrame]] = None,
        asset: Optional[MediaAsset] = None,
        audio_transcript: Optional[str] = None,
        save_to_memory: bool = True
    ) -> VideoResult:
        """
        Answer a question about a video.

        Args:
            question: Question about the video (required)
            frames: Pre-extracted frames; extracted from ``asset`` when absent
            asset: Raw video, uploaded when present
            audio_transcript: Transcript of the video's audio track
            save_to_memory: Remember the question and answer

        Returns:
            VideoResult with the answer, per-frame analyses, and side-effect status

        Raises:
            ValidationError: If the question is missing or there are no frames
            UpstreamError: If the final answer call fails
        """
        question = self.require_question(question)
        audio_transcript = audio_transcript.strip() if audio_transcript and audio_transcript.strip() else None

        if not frames:
            if asset is None or not asset.data:
                raise ValidationError("Missing frames")
            suffix = os.path.splitext(asset.name or "")[1] or ".mp4"
            frames = self.frame_extractor.extract(asset.data, suffix=suffix)
            if not frames:
                raise ValidationError("No frames could be extracted from the video")

        frames = frames[:self.config.max_video_frames]
        logger.info(f"Video pipeline: {len(frames)} frames, audio transcript: {audio_transcript is not None}")
        side_effects = SideEffectStatus()

        video_url = self.upload(asset, side_effects) if asset is not None and asset.data else None

        analyses = self.describe_frames(frames)
        failed = sum(1 for a in analyses if a.failed)
        if failed:
            logger.warning(f"{failed} of {len(analyses)} frames fell back to placeholder descriptions")

        context = self.build_context(analyses, audio_transcript)
        answer = self.gateway.complete([
            ChatMessage(role="system", content=VIDEO_SYSTEM_PROMPT),
            ChatMessage(role="user", content=f"{context}\n\nQuestion: {question}"),
        ])

        if save_to_memory:
            self.persist(
                self.build_memory_text(question, answer),
                {
                    "question": question,
                    "answer": answer,
                    "video_url": video_url,
                    "video_name": asset.name if asset is not None else None,
                    "video_type": asset.mime_type if asset is not None else None,
                    "video_size": asset.size_bytes if asset is not None else None,
                    "frame_count": len(analyses),
                    "has_audio": audio_transcript is not None,
                },
                side_effects
            )

        return VideoResult(
            answer=answer,
            frame_analyses=analyses,
            audio_transcript=audio_transcript,
            video_url=video_url,
            side_effects=side_effects
        )
