"""
Object Storage Abstraction Layer - The Bridge Pattern

Provides a clean interface for the object store the pipeline reads uploads
from and writes artifacts to. LocalStorage backs development and tests,
GCSStorage backs deployments on Cloud Storage.
"""

import os
import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from proshot.core.config import settings
from proshot.core.exceptions import StorageError
from proshot.core.logging import get_logger

logger = get_logger(__name__)


class IStorage(ABC):
    """Interface for object storage operations - The Bridge"""

    @abstractmethod
    async def download(self, bucket: str, path: str) -> bytes:
        """
        Read the full contents of an object.

        Raises:
            StorageError: if the object does not exist or cannot be read
        """
        pass

    @abstractmethod
    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "image/png"
    ) -> str:
        """
        Write an object at an exact path, overwriting any previous object.

        Returns:
            The object path
        """
        pass

    @abstractmethod
    async def make_public(self, bucket: str, path: str) -> None:
        """Mark an object publicly readable."""
        pass

    @abstractmethod
    def public_url(self, bucket: str, path: str) -> str:
        """Stable public URL for an object."""
        pass

    @abstractmethod
    async def exists(self, bucket: str, path: str) -> bool:
        """Check if an object exists."""
        pass

    @abstractmethod
    async def delete(self, bucket: str, path: str) -> bool:
        """Delete an object. Returns True if it existed."""
        pass


class LocalStorage(IStorage):
    """Local filesystem storage implementation for development.

    Buckets are directories under ``base_path``. Public-read is expressed as
    a world-readable file mode.
    """

    PUBLIC_MODE = 0o644
    PRIVATE_MODE = 0o600

    def __init__(
        self,
        base_path: str = "./data/storage",
        public_base_url: str = "http://localhost:8000/static/storage"
    ):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, bucket: str, path: str) -> Path:
        root = (self.base_path / bucket).resolve()
        target = (root / path).resolve()
        if root != target and root not in target.parents:
            raise StorageError(f"Object path escapes bucket: {path}")
        return target

    async def download(self, bucket: str, path: str) -> bytes:
        file_path = self._resolve(bucket, path)
        try:
            with open(file_path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise StorageError(f"Object not found: {bucket}/{path}")
        except OSError as e:
            raise StorageError(f"Failed to read {bucket}/{path}: {e}")

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "image/png"
    ) -> str:
        file_path = self._resolve(bucket, path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "wb") as f:
                f.write(data)
            os.chmod(file_path, self.PRIVATE_MODE)
        except OSError as e:
            raise StorageError(f"Failed to write {bucket}/{path}: {e}")
        return path

    async def make_public(self, bucket: str, path: str) -> None:
        file_path = self._resolve(bucket, path)
        if not file_path.exists():
            raise StorageError(f"Object not found: {bucket}/{path}")
        os.chmod(file_path, self.PUBLIC_MODE)

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.public_base_url}/{quote(bucket)}/{quote(path)}"

    def is_public(self, bucket: str, path: str) -> bool:
        file_path = self._resolve(bucket, path)
        return bool(file_path.stat().st_mode & 0o004)

    async def exists(self, bucket: str, path: str) -> bool:
        return self._resolve(bucket, path).exists()

    async def delete(self, bucket: str, path: str) -> bool:
        file_path = self._resolve(bucket, path)
        if file_path.exists():
            file_path.unlink()
            return True
        return False


class GCSStorage(IStorage):
    """Google Cloud Storage implementation for production.

    The client is created lazily so importing this module does not require
    credentials. Blocking client calls run in a worker thread.
    """

    def __init__(self, project: Optional[str] = None):
        self.project = project
        self._client = None

    @property
    def client(self):
        if self._client is None:
            from google.cloud import storage as gcs
            self._client = gcs.Client(project=self.project)
        return self._client

    def _blob(self, bucket: str, path: str):
        return self.client.bucket(bucket).blob(path)

    async def download(self, bucket: str, path: str) -> bytes:
        from google.api_core import exceptions as gcs_exceptions
        try:
            return await asyncio.to_thread(self._blob(bucket, path).download_as_bytes)
        except gcs_exceptions.NotFound:
            raise StorageError(f"Object not found: gs://{bucket}/{path}")
        except gcs_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to read gs://{bucket}/{path}: {e}")

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "image/png"
    ) -> str:
        from google.api_core import exceptions as gcs_exceptions
        blob = self._blob(bucket, path)
        try:
            await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        except gcs_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to write gs://{bucket}/{path}: {e}")
        return path

    async def make_public(self, bucket: str, path: str) -> None:
        from google.api_core import exceptions as gcs_exceptions
        try:
            await asyncio.to_thread(self._blob(bucket, path).make_public)
        except gcs_exceptions.GoogleAPICallError as e:
            raise StorageError(f"Failed to make gs://{bucket}/{path} public: {e}")

    def public_url(self, bucket: str, path: str) -> str:
        return self._blob(bucket, path).public_url

    async def exists(self, bucket: str, path: str) -> bool:
        return await asyncio.to_thread(self._blob(bucket, path).exists)

    async def delete(self, bucket: str, path: str) -> bool:
        from google.api_core import exceptions as gcs_exceptions
        try:
            await asyncio.to_thread(self._blob(bucket, path).delete)
            return True
        except gcs_exceptions.NotFound:
            return False


class StorageFactory:
    """
    Factory for creating storage instances.

    Switching from local storage to Cloud Storage is a matter of setting
    STORAGE_BACKEND=gcs. No code changes required.
    """

    _instance: Optional[IStorage] = None

    @classmethod
    def get_storage(cls) -> IStorage:
        """Get the appropriate storage implementation based on settings."""
        if cls._instance is None:
            if settings.STORAGE_BACKEND.lower() == "gcs":
                cls._instance = GCSStorage(project=settings.GCS_PROJECT)
            else:
                cls._instance = LocalStorage(
                    base_path=settings.LOCAL_STORAGE_PATH,
                    public_base_url=settings.PUBLIC_BASE_URL
                )
            logger.info("storage_initialized", backend=type(cls._instance).__name__)

        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None
