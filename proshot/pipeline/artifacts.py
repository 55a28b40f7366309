"""
Artifact Writer

Persists processed images at a deterministic location and publishes them:

    {owner_scope}/{ownerId}/{results}/{projectId or file stem}{ext}
"""

import io
from pathlib import PurePosixPath
from typing import Optional

from PIL import Image, UnidentifiedImageError

from proshot.core.logging import get_logger
from proshot.core.metrics import track_stage_latency
from proshot.core.storage import IStorage

logger = get_logger(__name__)

EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp", ".gif", ".heic", ".bmp", ".tif", ".tiff"}


def sniff_content_type(data: bytes, fallback: str = "image/png") -> str:
    """MIME type of an encoded image, or ``fallback`` if it is unrecognised."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            fmt = image.format
    except (UnidentifiedImageError, OSError):
        return fallback
    return Image.MIME.get(fmt or "", fallback)


class ArtifactWriter:
    """Writes results next to the owner's uploads and makes them public."""

    def __init__(
        self,
        storage: IStorage,
        owner_scope_prefix: str = "owners",
        results_segment: str = "results"
    ):
        self.storage = storage
        self.owner_scope_prefix = owner_scope_prefix
        self.results_segment = results_segment

    def artifact_path(self, owner_id: str, identity: str, content_type: str) -> str:
        """
        Deterministic object path for a result.

        ``identity`` is a project id or the uploaded file name; a file name's
        extension is replaced by one matching ``content_type``.
        """
        suffix = PurePosixPath(identity).suffix
        stem = identity[: -len(suffix)] if suffix.lower() in IMAGE_SUFFIXES else identity
        extension = EXTENSIONS.get(content_type, ".png")
        return f"{self.owner_scope_prefix}/{owner_id}/{self.results_segment}/{stem}{extension}"

    async def write(
        self,
        bucket: str,
        owner_id: str,
        identity: str,
        data: bytes,
        content_type: Optional[str] = None
    ) -> str:
        """
        Upload, mark public-read and return the public URL.

        Raises:
            StorageError: if any storage operation fails
        """
        content_type = content_type or sniff_content_type(data)
        path = self.artifact_path(owner_id, identity, content_type)

        with track_stage_latency("artifact_write"):
            await self.storage.upload(bucket, path, data, content_type=content_type)
            await self.storage.make_public(bucket, path)
            url = self.storage.public_url(bucket, path)

        logger.info(
            "artifact_written",
            bucket=bucket,
            path=path,
            content_type=content_type,
            size=len(data)
        )
        return url
