"""Object storage for raw uploaded media."""

from .r2_object_store import R2ObjectStore, UploadResult

__all__ = ['R2ObjectStore', 'UploadResult']
