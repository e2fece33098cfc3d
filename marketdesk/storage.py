"""
Storage abstraction for the S3-compatible object store and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from marketdesk.errors import StorageError


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        ...

    def exists(self, path: str) -> bool:
        ...

    def public_url(self, path: str) -> str:
        ...

    def resolve_url(self, path: str) -> str:
        ...

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        ...

    def delete(self, path: str) -> None:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage/v1/object/public/images"
    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        if path in self.stored_objects:
            raise StorageError(f"The resource already exists: {path}")
        self.stored_objects[path] = data
        return path

    def exists(self, path: str) -> bool:
        return path in self.stored_objects

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def resolve_url(self, path: str) -> str:
        if path not in self.stored_objects:
            raise FileNotFoundError(path)
        return self.public_url(path)

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return f"{self.base_url}/{path}?op=get&expires={expires_in}"

    def delete(self, path: str) -> None:
        self.stored_objects.pop(path, None)


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client for the hosted object store.

    When `public_base_url` is set, objects resolve to
    `<public_base_url>/<path>`; otherwise to a presigned GET URL.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: Optional[str] = None

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def upload_bytes(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
                CacheControl="max-age=3600",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
        return path

    def exists(self, path: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(str(exc)) from exc
        return True

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{path}"
        return self.presign_get(path)

    def resolve_url(self, path: str) -> str:
        if not self.exists(path):
            raise FileNotFoundError(path)
        return self.public_url(path)

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=expires_in,
        )

    def delete(self, path: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=path)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
