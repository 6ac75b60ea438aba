"""HTTP API for chat, media ingestion, and memory management."""

from .server import create_app, get_services

__all__ = ['create_app', 'get_services']
