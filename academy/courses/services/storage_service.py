import logging
import urllib.parse
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings

logger = logging.getLogger(__name__)


class VideoStorageService:
    """S3-compatible bucket holding lesson videos, thumbnails and resources."""

    def __init__(self):
        self.bucket = settings.VIDEO_STORAGE_BUCKET
        self.region = settings.VIDEO_STORAGE_REGION
        self.endpoint_url = settings.VIDEO_STORAGE_ENDPOINT_URL
        self.access_key = settings.VIDEO_STORAGE_ACCESS_KEY_ID
        self.secret_key = settings.VIDEO_STORAGE_SECRET_ACCESS_KEY

    def get_s3_client(self):
        """boto3 S3 client using virtual-host addressing."""
        return boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            region_name=self.region,
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            config=Config(s3={"addressing_style": "virtual"}),
        )

    def normalize_key(self, key: str) -> str:
        """Normalizes incoming keys for virtual-host style requests.

        - URL decoding (e.g. %20 → space)
        - strips leading slashes
        - strips a duplicated "<bucket>/" prefix
        """
        if not key:
            return key
        trimmed = urllib.parse.unquote(key).lstrip("/")
        bucket_prefix = f"{self.bucket}/"
        if trimmed.startswith(bucket_prefix):
            trimmed = trimmed[len(bucket_prefix):]
        return trimmed

    def generate_presigned_url(self, key: str, expires_seconds: Optional[int] = None) -> Optional[str]:
        """
        Presigned GET URL for one object.

        Args:
            key: object key, e.g. "courses/12/lesson-3.mp4"
            expires_seconds: lifetime, defaults to VIDEO_URL_EXPIRES_SECONDS

        Returns:
            The URL, or None when signing failed
        """
        if expires_seconds is None:
            expires_seconds = settings.VIDEO_URL_EXPIRES_SECONDS
        normalized_key = self.normalize_key(key)
        try:
            return self.get_s3_client().generate_presigned_url(
                ClientMethod="get_object",
                Params={"Bucket": self.bucket, "Key": normalized_key},
                ExpiresIn=expires_seconds,
            )
        except (BotoCoreError, ClientError):
            logger.exception("Could not sign storage key %s", normalized_key)
            return None

    def delete_object(self, key: str) -> bool:
        normalized_key = self.normalize_key(key)
        try:
            self.get_s3_client().delete_object(Bucket=self.bucket, Key=normalized_key)
        except (BotoCoreError, ClientError):
            logger.exception("Could not delete storage key %s", normalized_key)
            return False
        return True
