"""
Storage abstraction layer for the loader.

Provides a unified interface for reading exported files from either the
local filesystem (development) or Google Cloud Storage (production).

The Protocol pattern lets the file locator work with any storage backend
without knowing the implementation details.
"""

from pathlib import Path
from typing import Protocol


class Storage(Protocol):
    """
    Protocol defining the storage interface.

    - list_files: Find files directly under a directory/prefix
    - read_file: Get file contents as bytes
    - join: Combine a base path with a name
    """

    def list_files(self, path: str) -> list[str]:
        """List all files directly under the given path."""
        ...

    def read_file(self, path: str) -> bytes:
        """Read and return the entire contents of a file."""
        ...

    def join(self, base: str, name: str) -> str:
        """Join a base path with a name."""
        ...


class LocalStorage:
    """Local filesystem storage, accessed via pathlib."""

    def list_files(self, path: str) -> list[str]:
        """
        List all files in a directory.

        Args:
            path: Directory path to list

        Returns:
            List of file paths as strings, empty if the directory doesn't exist
        """
        directory = Path(path)
        if not directory.is_dir():
            return []
        return sorted(str(f) for f in directory.iterdir() if f.is_file())

    def read_file(self, path: str) -> bytes:
        return Path(path).read_bytes()

    def join(self, base: str, name: str) -> str:
        return str(Path(base) / name)


class GCSStorage:
    """Exports in a GCS bucket, addressed as gs://bucket/key."""

    def __init__(self, client=None):
        # Application Default Credentials unless a client is injected
        if client is None:
            from google.cloud import storage
            client = storage.Client()
        self.client = client

    @staticmethod
    def split(uri: str) -> tuple[str, str]:
        """"gs://data/exports/mongo" -> ("data", "exports/mongo")"""
        bucket, _, key = uri.removeprefix("gs://").partition("/")
        return bucket, key

    def list_files(self, path: str) -> list[str]:
        """Blobs one level below ``path``. Nested prefixes are not descended into."""
        bucket, prefix = self.split(path.rstrip("/") + "/")
        blobs = self.client.list_blobs(bucket, prefix=prefix, delimiter="/")
        return [f"gs://{bucket}/{blob.name}" for blob in blobs if not blob.name.endswith("/")]

    def read_file(self, path: str) -> bytes:
        bucket, key = self.split(path)
        return self.client.bucket(bucket).blob(key).download_as_bytes()

    def join(self, base: str, name: str) -> str:
        return f"{base.rstrip('/')}/{name}"


def storage_for(root: str) -> Storage:
    """GCS for gs:// roots, local filesystem otherwise."""
    if root.startswith("gs://"):
        return GCSStorage()
    return LocalStorage()
