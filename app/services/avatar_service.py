"""
Avatar upload service.

Validates uploaded images and stores them in an S3-compatible bucket.
"""
import logging
import time
from typing import Optional
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.orm import Session

from app.core import config
from app.db.models.user import User

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}


class AvatarValidationError(ValueError):
    """Uploaded file is too large or not an accepted image type."""


class AvatarStorageError(RuntimeError):
    """The object store rejected the upload."""


class AvatarStorage:
    """Public object storage for avatars (S3 API, works with R2/MinIO)."""

    def __init__(
        self,
        bucket: str,
        public_base_url: str,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        self.endpoint_url = endpoint_url
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                aws_access_key_id=self.access_key_id,
                aws_secret_access_key=self.secret_access_key,
                region_name="auto" if self.endpoint_url else None,
            )
        return self._client

    @classmethod
    def from_config(cls) -> "AvatarStorage":
        return cls(
            bucket=config.AVATAR_BUCKET,
            public_base_url=config.AVATAR_PUBLIC_BASE_URL,
            endpoint_url=config.AVATAR_ENDPOINT_URL,
            access_key_id=config.AVATAR_ACCESS_KEY_ID,
            secret_access_key=config.AVATAR_SECRET_ACCESS_KEY,
        )

    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Upload bytes and return their public URL."""
        if not self.bucket:
            raise AvatarStorageError("Avatar storage not configured - AVATAR_BUCKET required")
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise AvatarStorageError(f"Upload failed: {e}") from e
        return f"{self.public_base_url}/{quote(key)}"


def validate_avatar(data: bytes, content_type: Optional[str]) -> None:
    errors = []
    if len(data) > config.AVATAR_MAX_BYTES:
        errors.append("File size should be less than 5MB")
    if content_type not in ALLOWED_CONTENT_TYPES:
        errors.append("File type should be JPEG, PNG, WebP, or GIF")
    if errors:
        raise AvatarValidationError(", ".join(errors))


def upload_avatar(
    db: Session,
    storage: AvatarStorage,
    user: User,
    filename: Optional[str],
    data: bytes,
    content_type: Optional[str],
) -> str:
    """
    Validate and store an avatar, then persist its URL on the user.

    Returns:
        Public URL of the stored avatar
    """
    validate_avatar(data, content_type)

    safe_name = (filename or "avatar").replace("/", "_")
    key = f"avatars/{user.id}/{int(time.time() * 1000)}-{safe_name}"
    url = storage.put(key, data, content_type)

    user.avatar_url = url
    db.commit()

    logger.info(f"Avatar uploaded: user_id={user.id}, key={key}")
    return url
