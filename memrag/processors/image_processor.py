"""
Image ingestion pipeline.

Uploads the image, answers the question with the vision model using a
base64 data URL, and optionally remembers the question and answer.
"""

import io
import logging
from typing import Optional

from PIL import Image, UnidentifiedImageError

from ..errors import ValidationError
from ..models import ImageResult, MediaAsset, Modality, SideEffectStatus
from .base import MediaPipeline

logger = logging.getLogger(__name__)


class ImagePipeline(MediaPipeline):
    """
    Pipeline for image questions.

    The vision answer is the modality's core value: if the vision model
    fails, the UpstreamError propagates to the caller.
    """

    upload_prefix = "images"

    def get_modality(self) -> Modality:
        return Modality.IMAGE

    def resolve_mime_type(self, asset: MediaAsset) -> str:
        """
        Determine the image MIME type, sniffing the bytes when the declared
        type is missing, generic, or a non-canonical alias such as image/jpg.

        Raises:
            ValidationError: If the data is not a supported image
        """
        declared = (asset.mime_type or "").lower()
        if declared in self.config.supported_image_types:
            return declared

        try:
            with Image.open(io.BytesIO(asset.data)) as img:
                mime_type = Image.MIME.get(img.format or "")
        except (UnidentifiedImageError, OSError) as e:
            raise ValidationError(f"Invalid image file: {e}", cause=e)

        if not mime_type or mime_type not in self.config.supported_image_types:
            raise ValidationError(f"Unsupported image type: {mime_type or 'unknown'}")
        return mime_type

    def ingest(
        self,
        asset: MediaAsset,
        question: Optional[str] = None,
        save_to_memory: bool = False
    ) -> ImageResult:
        """
        Answer a question about an image.

        Args:
            asset: Uploaded image
            question: Question about the image (required)
            save_to_memory: Remember the question and answer

        Returns:
            ImageResult with the answer, optional URL, and side-effect status

        Raises:
            ValidationError: If the image or question is missing or invalid
            UpstreamError: If the vision model fails
        """
        if asset is None or not asset.data:
            raise ValidationError("Missing image")
        question = self.require_question(question)
        mime_type = self.resolve_mime_type(asset)

        logger.info(f"Image pipeline: {asset.name} ({asset.size_bytes} bytes, {mime_type})")
        side_effects = SideEffectStatus()

        image_url = self.upload(asset, side_effects)

        answer = self.gateway.describe_image(asset.data, mime_type, question)
        logger.info(f"Image analysis complete ({len(answer)} characters)")

        if save_to_memory:
            self.persist(
                self.build_memory_text(question, answer),
                {
                    "question": question,
                    "answer": answer,
                    "image_url": image_url,
                    "image_name": asset.name,
                    "image_type": mime_type,
                    "image_size": asset.size_bytes,
                },
                side_effects
            )

        return ImageResult(response=answer, image_url=image_url, side_effects=side_effects)
