"""Inference gateway for hosted chat, vision, embedding, and transcription models."""

from .workers_ai_client import (
    GenerationConfig,
    TranscriptionResult,
    TranscriptionStatus,
    WorkersAIClient,
    classify_failure,
)

__all__ = [
    'WorkersAIClient',
    'GenerationConfig',
    'TranscriptionResult',
    'TranscriptionStatus',
    'classify_failure'
]
