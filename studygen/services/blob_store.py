"""
Blob storage for uploaded sources and generated artifacts.

Two backends share one async interface:
  - S3BlobStore: boto3 client calls run in a worker thread and routed
    through the service gateway (timeout, retry, circuit breaker)
  - LocalBlobStore: files under a base directory, for local development

Failures are raised as StorageError so stages surface them as stage failures.
"""
import asyncio
from pathlib import Path
from typing import Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from studygen.config import get_settings
from studygen.exceptions import StorageError
from studygen.services.gateway import get_gateway
from studygen.utils.logger import logger


class BlobStore(Protocol):
    async def put(self, path: str, data: bytes, content_type: str) -> None: ...

    async def get(self, path: str) -> Optional[bytes]: ...

    async def delete(self, path: str) -> bool: ...


class S3BlobStore:
    """Stores blobs in an S3 bucket."""

    def __init__(self, bucket: str, client=None):
        settings = get_settings()
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            region_name=settings.aws_s3_region,
            aws_access_key_id=settings.aws_access_key_id or None,
            aws_secret_access_key=settings.aws_secret_access_key or None,
        )

    async def _call(self, fn, **kwargs):
        return await get_gateway().execute("blob_store", asyncio.to_thread, fn, **kwargs)

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        try:
            await self._call(
                self.client.put_object,
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError, asyncio.TimeoutError) as e:
            logger.error("blob.put_failed", extra={"blob_path": path, "error": str(e)[:200]})
            raise StorageError(f"Failed to store {path}: {e}") from e

    async def get(self, path: str) -> Optional[bytes]:
        try:
            response = await self._call(self.client.get_object, Bucket=self.bucket, Key=path)
            return await asyncio.to_thread(response["Body"].read)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise StorageError(f"Failed to read {path}: {e}") from e
        except (BotoCoreError, asyncio.TimeoutError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    async def delete(self, path: str) -> bool:
        try:
            await self._call(self.client.delete_object, Bucket=self.bucket, Key=path)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.error("blob.delete_failed", extra={"blob_path": path, "error": str(e)[:200]})
            return False


class LocalBlobStore:
    """
    Stores blobs on the local filesystem.
    Suitable for development or single-server deployment.
    """

    def __init__(self, base_dir: str = "study_blobs"):
        self.base_dir = Path(base_dir).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        target = (self.base_dir / path).resolve()
        if self.base_dir not in target.parents:
            raise StorageError(f"Blob path escapes storage root: {path}")
        return target

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_bytes, data)
        except OSError as e:
            raise StorageError(f"Failed to store {path}: {e}") from e

    async def get(self, path: str) -> Optional[bytes]:
        target = self._resolve(path)
        if not target.exists():
            return None
        try:
            return await asyncio.to_thread(target.read_bytes)
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    async def delete(self, path: str) -> bool:
        try:
            self._resolve(path).unlink()
            return True
        except FileNotFoundError:
            return False


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    global _blob_store
    if _blob_store is None:
        settings = get_settings()
        if settings.storage_type.lower() == "s3":
            _blob_store = S3BlobStore(settings.aws_s3_bucket)
        else:
            _blob_store = LocalBlobStore(settings.storage_dir)
    return _blob_store
