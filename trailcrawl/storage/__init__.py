from .blob_store import BlobStore, FileSystemBlobStore, InMemoryBlobStore

__all__ = ["BlobStore", "FileSystemBlobStore", "InMemoryBlobStore"]
