"""
Batch image upload into object storage.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Iterable

from marketdesk.errors import StorageError
from marketdesk.storage import StorageClient

logger = logging.getLogger(__name__)

UPLOAD_PREFIXES = ("blog", "insight", "market")


@dataclass(frozen=True)
class UploadItem:
    filename: str
    data: bytes
    content_type: str = "application/octet-stream"

    @property
    def extension(self) -> str:
        _, dot, ext = self.filename.rpartition(".")
        return ext.lower() if dot else "bin"


def storage_path_for(prefix: str, filename: str) -> str:
    """Build a collision-resistant object path like `market/1700000000000-3f2a9c1d0b7e4.png`."""
    item = UploadItem(filename=filename, data=b"")
    stamp = int(time.time() * 1000)
    return f"{prefix}/{stamp}-{uuid.uuid4().hex[:13]}.{item.extension}"


def upload_images(
    storage: StorageClient, files: Iterable[UploadItem], prefix: str
) -> list[str]:
    """
    Upload each image and return the stored paths in input order.

    Non-image files and files whose upload fails are skipped; the rest of
    the batch continues.
    """
    files = list(files)
    paths: list[str] = []
    for item in files:
        if not item.content_type.startswith("image/"):
            logger.warning("Skipped %s: not an image file", item.filename)
            continue
        path = storage_path_for(prefix, item.filename)
        try:
            storage.upload_bytes(path, item.data, content_type=item.content_type)
        except (StorageError, OSError) as exc:
            logger.error("Upload error for %s: %s", item.filename, exc)
            continue
        paths.append(path)
    logger.info("Uploaded %d of %d image(s) under %s/", len(paths), len(files), prefix)
    return paths
