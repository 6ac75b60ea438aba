"""
Vector database components for memory storage and retrieval.

Provides the vector index operations the memory service relies on:
- Batch insert with dimension validation
- Filtered similarity search
- Delete by id and enumeration
- Aggregate statistics
"""

from .qdrant_vector_store import QdrantVectorStore

__all__ = ['QdrantVectorStore']
