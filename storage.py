"""
Object storage abstraction for the S3-compatible buckets and in-memory testing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Protocol, Tuple
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an object storage call fails."""


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = False,
    ) -> None:
        ...

    def remove(self, bucket: str, paths: Iterable[str]) -> None:
        ...

    def list_paths(self, bucket: str, prefix: str) -> List[str]:
        ...

    def get_public_url(self, bucket: str, path: str) -> str:
        ...


def _public_url(base_url: str, bucket: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{bucket}/{quote(path)}"


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://storage.test/object/public"
    objects: Dict[Tuple[str, str], Tuple[bytes, str]] = field(default_factory=dict)

    def upload(self, bucket, path, data, content_type="application/octet-stream", upsert=False):
        key = (bucket, path)
        if key in self.objects and not upsert:
            raise StorageError(f"The resource already exists: {bucket}/{path}")
        self.objects[key] = (bytes(data), content_type)

    def remove(self, bucket, paths):
        for path in paths:
            self.objects.pop((bucket, path), None)

    def list_paths(self, bucket, prefix):
        return sorted(path for b, path in self.objects if b == bucket and path.startswith(prefix))

    def get_public_url(self, bucket, path):
        return _public_url(self.base_url, bucket, path)

    def get_bytes(self, bucket: str, path: str) -> bytes:
        stored = self.objects.get((bucket, path))
        if stored is None:
            raise FileNotFoundError(f"{bucket}/{path}")
        return stored[0]


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client for the hosted buckets.
    """

    endpoint: str
    region: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str

    def __post_init__(self):
        # Hosted S3 gateways expect path-style addressing.
        config = Config(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def _exists(self, bucket: str, path: str) -> bool:
        try:
            self._client.head_object(Bucket=bucket, Key=path)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    def upload(self, bucket, path, data, content_type="application/octet-stream", upsert=False):
        try:
            if not upsert and self._exists(bucket, path):
                raise StorageError(f"The resource already exists: {bucket}/{path}")
            self._client.put_object(
                Bucket=bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Upload to {bucket}/{path} failed: {e}") from e

    def remove(self, bucket, paths):
        objects = [{"Key": path} for path in paths]
        if not objects:
            return
        try:
            response = self._client.delete_objects(
                Bucket=bucket, Delete={"Objects": objects, "Quiet": True}
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Removing objects from {bucket} failed: {e}") from e
        errors = response.get("Errors") or []
        if errors:
            keys = ", ".join(err.get("Key", "?") for err in errors)
            raise StorageError(f"Could not remove from {bucket}: {keys}")

    def list_paths(self, bucket, prefix):
        paths = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                paths.extend(obj["Key"] for obj in page.get("Contents", []))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Listing {bucket}/{prefix} failed: {e}") from e
        return paths

    def get_public_url(self, bucket, path):
        return _public_url(self.public_base_url, bucket, path)


def build_storage_client(config) -> StorageClient:
    """Create the storage client described by the app configuration."""
    if not config.get("STORAGE_ENDPOINT"):
        logger.warning("STORAGE_ENDPOINT not set, using in-memory object storage")
        return InMemoryStorageClient()
    return S3StorageClient(
        endpoint=config["STORAGE_ENDPOINT"],
        region=config.get("STORAGE_REGION") or "us-east-1",
        access_key_id=config.get("STORAGE_ACCESS_KEY_ID") or "",
        secret_access_key=config.get("STORAGE_SECRET_ACCESS_KEY") or "",
        public_base_url=config.get("STORAGE_PUBLIC_URL") or config["STORAGE_ENDPOINT"],
    )
