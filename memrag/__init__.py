"""
Memory-augmented Multimodal Assistant Backend

Answers questions about text, images, video, and audio using a language
model backed by a persistent semantic memory (retrieval-augmented generation).
"""

__version__ = "0.1.0"
