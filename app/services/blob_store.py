"""Artifact storage for files produced by chat tools.

Tools upload rendered documents here and hand the returned URL to the
client as part of their structured result.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from app.core.settings import Settings
from app.services.contracts import BlobStoreProtocol

logger = logging.getLogger(__name__)


class BlobStoreError(RuntimeError):
    """Raised when an artifact can't be stored."""


class LocalBlobStore:
    """Filesystem-backed store served from a static base URL (local development)."""

    def __init__(self, root_dir: str, public_base_url: str) -> None:
        self._root = Path(root_dir)
        self._public_base_url = public_base_url.rstrip("/")

    async def put(self, filename: str, data: bytes, content_type: str) -> str:
        target = self._root / Path(filename).name
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as exc:
            raise BlobStoreError(f"failed to store artifact {target.name}") from exc
        logger.info(
            "stored artifact locally",
            extra={"artifact_name": target.name, "content_type": content_type, "size_bytes": len(data)},
        )
        return f"{self._public_base_url}/{target.name}"

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)


class S3BlobStore:
    """S3-compatible store (AWS S3, MinIO, LocalStack) with public object URLs."""

    def __init__(
        self,
        bucket_name: str,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        client: Any | None = None,
    ) -> None:
        self._bucket_name = bucket_name
        self._region = region
        self._endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        import boto3
        from botocore.config import Config

        self._client = boto3.client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint_url,
            config=Config(signature_version="s3v4", retries={"max_attempts": 3, "mode": "adaptive"}),
        )
        return self._client

    async def put(self, filename: str, data: bytes, content_type: str) -> str:
        key = Path(filename).name
        try:
            await asyncio.to_thread(
                self._get_client().put_object,
                Bucket=self._bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as exc:
            raise BlobStoreError(f"failed to upload artifact {key}") from exc
        logger.info("uploaded artifact to s3", extra={"bucket": self._bucket_name, "key": key, "size_bytes": len(data)})
        return self._object_url(key)

    def _object_url(self, key: str) -> str:
        if self._endpoint_url:
            return f"{self._endpoint_url}/{self._bucket_name}/{key}"
        return f"https://{self._bucket_name}.s3.{self._region}.amazonaws.com/{key}"


def build_blob_store(settings: Settings) -> BlobStoreProtocol:
    if settings.blob_store_backend.lower() == "s3":
        if not settings.s3_bucket_name:
            raise ValueError("S3_BUCKET_NAME is required when BLOB_STORE_BACKEND=s3")
        return S3BlobStore(
            bucket_name=settings.s3_bucket_name,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
        )
    return LocalBlobStore(root_dir=settings.blob_store_local_dir, public_base_url=settings.blob_store_public_base_url)
