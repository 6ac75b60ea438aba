"""
Frame sampling for uploaded videos.

Used when a caller supplies a video file instead of pre-extracted frames
(the CLI and multipart API uploads). Frames are sampled at a fixed
interval, downscaled to fit the configured bounds, and JPEG-encoded as
base64 so they can be sent to the vision model as data URLs.
"""

import base64
import logging
import os
import tempfile
from typing import List

import cv2

from ..config import MediaConfig
from ..errors import ValidationError
from ..models import VideoFrame

logger = logging.getLogger(__name__)


class FrameExtractor:
    """Samples JPEG frames from a video with OpenCV."""

    def __init__(self, config: MediaConfig):
        self.config = config

    def sample_timestamps(self, duration: float) -> List[float]:
        """
        Timestamps to sample: one every ``max(interval, duration / max_frames)`` seconds.

        Args:
            duration: Video duration in seconds

        Returns:
            At most ``max_video_frames`` timestamps, starting at 0
        """
        max_frames = self.config.max_video_frames
        if duration <= 0 or max_frames <= 0:
            return []
        interval = max(self.config.frame_interval_seconds, duration / max_frames)

        timestamps = []
        current = 0.0
        while current < duration and len(timestamps) < max_frames:
            timestamps.append(round(current, 3))
            current += interval
        return timestamps

    def extract(self, video_bytes: bytes, suffix: str = ".mp4") -> List[VideoFrame]:
        """
        Extract frames from video bytes.

        OpenCV reads from a path, so the bytes are spooled to a temporary file.

        Raises:
            ValidationError: If the video cannot be decoded
        """
        fd, path = tempfile.mkstemp(suffix=suffix)
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(video_bytes)
            return self.extract_from_path(path)
        finally:
            os.unlink(path)

    def extract_from_path(self, path: str) -> List[VideoFrame]:
        """
        Extract frames from a video file.

        Args:
            path: Path to the video

        Returns:
            Sampled frames in timestamp order

        Raises:
            ValidationError: If the video cannot be decoded
        """
        capture = cv2.VideoCapture(path)
        if not capture.isOpened():
            raise ValidationError(f"Could not open video: {os.path.basename(path)}")

        try:
            fps = capture.get(cv2.CAP_PROP_FPS) or 0
            frame_count = capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0
            if fps <= 0 or frame_count <= 0:
                raise ValidationError("Video has no readable frames")
            duration = frame_count / fps

            frames = []
            for timestamp in self.sample_timestamps(duration):
                capture.set(cv2.CAP_PROP_POS_MSEC, timestamp * 1000)
                ok, image = capture.read()
                if not ok:
                    logger.warning(f"Could not read frame at {timestamp:.1f}s")
                    continue
                frames.append(VideoFrame(timestamp=timestamp, base64=self._encode(image)))
        finally:
            capture.release()

        logger.info(f"Extracted {len(frames)} frames from {duration:.1f}s video")
        return frames

    def _encode(self, image) -> str:
        height, width = image.shape[:2]
        scale = min(self.config.frame_max_width / width, self.config.frame_max_height / height, 1.0)
        if scale < 1.0:
            image = cv2.resize(image, (int(width * scale), int(height * scale)), interpolation=cv2.INTER_AREA)

        ok, buffer = cv2.imencode('.jpg', image, [cv2.IMWRITE_JPEG_QUALITY, self.config.frame_jpeg_quality])
        if not ok:
            raise ValidationError("Failed to encode video frame")
        return base64.b64encode(buffer.tobytes()).decode('ascii')
