"""
Object storage collaborator.

The ledger only knows keys. Keys are workspace-scoped and flat:
``{workspace_id}/{uuid}{ext}``, so moving a file between folders never touches
storage.
"""
import asyncio
import logging
import os
import uuid
from typing import Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.errors import StorageError
from app.settings import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class ObjectStorage(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> str: ...

    async def delete(self, key: str) -> None: ...


def build_storage_key(workspace_id: uuid.UUID, filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()[:20]
    return f"{workspace_id}/{uuid.uuid4().hex}{ext}"


class S3ObjectStorage:
    def __init__(self, bucket: str, client=None):
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            region_name=settings.AWS_DEFAULT_REGION,
        )

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self.client.put_object, Bucket=self.bucket, Key=key, Body=data, ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Upload of %s to bucket %s failed: %s", key, self.bucket, exc)
            raise StorageError("Could not store file")
        return key

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.error("Delete of %s from bucket %s failed: %s", key, self.bucket, exc)
            raise StorageError("Could not delete stored file")


_storage: S3ObjectStorage | None = None


def get_object_storage() -> ObjectStorage:
    global _storage
    if _storage is None:
        _storage = S3ObjectStorage(settings.S3_BUCKET_NAME)
    return _storage
