"""Object storage for attachment blobs."""

from .blobstore import HttpBlobStore, IBlobStore, LocalBlobStore

__all__ = ["HttpBlobStore", "IBlobStore", "LocalBlobStore"]
