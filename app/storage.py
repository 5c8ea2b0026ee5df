import logging
from collections.abc import Iterator
from typing import Literal

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings
from app.errors import StorageUnavailable

logger = logging.getLogger(__name__)

_OPERATIONS = {"PUT": "put_object", "GET": "get_object"}


def build_s3_client(settings: Settings):
    credentials = {}
    if settings.storage_access_key_id and settings.storage_secret_access_key:
        credentials["aws_access_key_id"] = settings.storage_access_key_id
        credentials["aws_secret_access_key"] = settings.storage_secret_access_key
    return boto3.client(
        "s3",
        endpoint_url=settings.storage_endpoint_url,
        region_name=settings.storage_region,
        config=Config(
            signature_version=settings.storage_signature_version,
            s3={"addressing_style": settings.storage_addressing_style},
        ),
        **credentials,
    )


class S3BucketStorage:
    """Thin wrapper over one bucket of an S3-compatible service.

    Backend errors are logged here and re-raised as ``StorageUnavailable`` so
    callers never see botocore exceptions.
    """

    def __init__(self, settings: Settings, client=None):
        self.bucket = settings.storage_bucket
        self.client = client or build_s3_client(settings)

    def iter_pages(self, *, page_size: int, cursor: str | None = None) -> Iterator[tuple[list[dict], str | None]]:
        """Yield ``(contents, next_cursor)`` per listing call, starting at ``cursor``."""
        token = cursor
        while True:
            params = {"Bucket": self.bucket, "MaxKeys": page_size}
            if token:
                params["ContinuationToken"] = token
            try:
                page = self.client.list_objects_v2(**params)
            except (BotoCoreError, ClientError) as exc:
                logger.exception("Failed to list bucket %s", self.bucket)
                raise StorageUnavailable("Failed to list files") from exc

            token = page.get("NextContinuationToken") if page.get("IsTruncated") else None
            yield page.get("Contents", []), token
            if not token:
                return

    def presign(
        self,
        method: Literal["PUT", "GET"],
        key: str,
        *,
        expires_in: int,
        content_type: str | None = None,
    ) -> str:
        params = {"Bucket": self.bucket, "Key": key}
        if content_type:
            params["ContentType"] = content_type
        try:
            return self.client.generate_presigned_url(
                _OPERATIONS[method],
                Params=params,
                ExpiresIn=expires_in,
                HttpMethod=method,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Failed to presign %s for %s", method, key)
            raise StorageUnavailable("Failed to generate presigned URL") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Failed to delete %s from bucket %s", key, self.bucket)
            raise StorageUnavailable("Failed to delete file") from exc
