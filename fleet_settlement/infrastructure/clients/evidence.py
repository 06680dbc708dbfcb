"""Payment evidence object store (S3 compatible) with retried cleanup"""

import asyncio
import re
import uuid
from functools import lru_cache

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from fleet_settlement.config import settings
from fleet_settlement.domain.exceptions import StorageFailureError
from fleet_settlement.infrastructure.observability.metrics import evidence_operation_histogram

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def evidence_key(driver_id: str, week_id: str, filename: str) -> str:
    """Object key for a payment proof; unique per upload attempt"""
    safe_name = _UNSAFE.sub("_", filename or "proof").strip("_") or "proof"
    return f"payments/{driver_id}/{week_id}/{uuid.uuid4().hex}-{safe_name}"


@lru_cache(maxsize=1)
def _s3_client():
    return boto3.session.Session().client(
        "s3",
        region_name=settings.evidence_region,
        endpoint_url=settings.evidence_endpoint_url,
        config=Config(signature_version="s3v4"),
    )


class EvidenceStore:
    """Stores payment proofs and deletes them again when a commit rolls back"""

    def __init__(self, bucket: str | None = None, client=None, public_base_url: str | None = None):
        self.bucket = bucket or settings.evidence_bucket
        self.client = client or _s3_client()
        self.public_base_url = public_base_url or settings.evidence_public_base_url
        self.max_retries = 3
        self.backoff_base = 0.2

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        return f"s3://{self.bucket}/{key}"

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Upload bytes and return the object's URL"""
        try:
            with evidence_operation_histogram.labels(operation="put").time():
                self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (BotoCoreError, ClientError) as e:
            raise StorageFailureError(f"Evidence upload failed for {key}: {e}") from e
        return self.url_for(key)

    def delete(self, key: str) -> None:
        """Delete an object; deleting a missing key succeeds"""
        try:
            with evidence_operation_histogram.labels(operation="delete").time():
                self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageFailureError(f"Evidence delete failed for {key}: {e}") from e

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        return await asyncio.to_thread(self.put, key, data, content_type)

    async def remove(self, key: str) -> None:
        """
        Delete with retry for compensating cleanup.

        Retry strategy:
        - Exponential backoff: 0.2s, 0.4s (base * 2^attempt)
        - Final failure re-raises StorageFailureError
        """
        attempt = 0
        while True:
            try:
                await asyncio.to_thread(self.delete, key)
                return
            except StorageFailureError:
                attempt += 1
                if attempt >= self.max_retries:
                    raise
                await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))
