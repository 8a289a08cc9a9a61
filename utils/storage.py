from __future__ import annotations

import logging
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

DEFAULT_SIGN_TTL = 60 * 5


class ObjectStore:
    """Uploads, signed reads and best-effort deletes against S3."""

    def __init__(self, client=None, region: Optional[str] = None, default_ttl: int = DEFAULT_SIGN_TTL):
        self._client = client
        self._region = region
        self.default_ttl = default_ttl

    @property
    def client(self):
        # Created on first use so the app can boot without AWS credentials
        if self._client is None:
            self._client = boto3.client("s3", region_name=self._region)
        return self._client

    def sign_read(self, bucket: str, key: str, ttl: Optional[int] = None) -> str:
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=int(ttl or self.default_ttl),
        )

    def delete(self, bucket: str, key: Optional[str]) -> bool:
        """Delete an object. Failures are logged, never raised: the object may already be gone."""
        if not key:
            return False
        try:
            self.client.delete_object(Bucket=bucket, Key=key)
            return True
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Failed to delete s3://%s/%s: %s", bucket, key, exc)
            return False

    def upload(self, bucket: str, key: str, body: bytes, content_type: Optional[str] = None) -> str:
        """Store ``body`` under ``key``. S3 errors propagate to the caller."""
        self.client.put_object(
            Bucket=bucket,
            Key=key,
            Body=body,
            ContentType=content_type or "application/octet-stream",
        )
        return key
