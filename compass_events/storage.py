"""storage.py — Image uploads to S3.

Objects land at <prefix>/<owner id>/<uuid>_<filename>. The returned URL points
at the custom endpoint when one is configured (LocalStack, MinIO), otherwise at
the bucket's virtual-hosted AWS URL.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError

from compass_events.errors import DependencyFailure, ValidationError

__all__ = ["ALLOWED_IMAGE_TYPES", "ImageStorage", "ImageUpload"]

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"image/png", "image/jpeg", "image/jpg"}


@dataclass(frozen=True)
class ImageUpload:
    data: bytes
    filename: str
    content_type: str


class ImageStorage:
    def __init__(self, s3_client: Any, bucket: str, region: str, endpoint: Optional[str] = None) -> None:
        self._s3 = s3_client
        self._bucket = bucket
        self._region = region
        self._endpoint = endpoint or ""

    def object_key(self, owner_id: str, filename: str, path_prefix: str = "general") -> str:
        prefix = path_prefix if not path_prefix or path_prefix.endswith("/") else f"{path_prefix}/"
        return f"{prefix}{owner_id}/{uuid.uuid4()}_{filename}"

    def public_url(self, key: str) -> str:
        if self._endpoint:
            base = self._endpoint if self._endpoint.endswith("/") else f"{self._endpoint}/"
            return f"{base}{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    def upload_image(
        self,
        data: bytes,
        owner_id: str,
        *,
        filename: str,
        content_type: str,
        path_prefix: str = "general",
    ) -> str:
        """Upload and return the object's URL. Only PNG and JPEG are accepted."""
        if not data:
            raise ValidationError("Image file is empty.")
        if content_type not in ALLOWED_IMAGE_TYPES:
            raise ValidationError(f"Unsupported image type: {content_type}")

        key = self.object_key(owner_id, filename, path_prefix)
        try:
            self._s3.put_object(Bucket=self._bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 upload failed for %s: %s", key, exc)
            raise DependencyFailure("Image upload failed") from exc
        return self.public_url(key)
