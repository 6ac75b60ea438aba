"""Memory storage and retrieval for memory-augmented generation."""

from .memory_service import MemoryService
from .vectordb import QdrantVectorStore

__all__ = ['MemoryService', 'QdrantVectorStore']
