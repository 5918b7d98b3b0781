"""
Storage Module

Object storage primitives used by the upload and lifecycle layers:
- Scoped, time-limited capabilities (presigned URLs)
- Multipart session management
- Batched, chunked deletion
- Collision-resistant key construction
"""

from .presigned import PresignedURL
from .client import (
    ObjectStorageClient,
    ObjectStat,
    BatchDeleteResult,
    build_storage_client,
    translate_error,
)
from .keys import sanitize_filename, build_object_key, owner_prefix, key_belongs_to

__all__ = [
    # Capabilities
    'PresignedURL',

    # Client
    'ObjectStorageClient',
    'ObjectStat',
    'BatchDeleteResult',
    'build_storage_client',
    'translate_error',

    # Keys
    'sanitize_filename',
    'build_object_key',
    'owner_prefix',
    'key_belongs_to',
]
