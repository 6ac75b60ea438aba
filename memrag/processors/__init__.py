"""
Media ingestion pipelines.

Provides image, audio and video pipelines that upload raw media, invoke the
inference gateway, and optionally remember the interaction.
"""

from .base import MediaPipeline
from .image_processor import ImagePipeline
from .audio_processor import AudioPipeline, is_usable_transcript
from .video_processor import VideoPipeline
from .frame_extractor import FrameExtractor

__all__ = [
    'MediaPipeline',
    'ImagePipeline',
    'AudioPipeline',
    'VideoPipeline',
    'FrameExtractor',
    'is_usable_transcript'
]
