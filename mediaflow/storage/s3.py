"""
S3 object store.

Objects live in a single bucket; public URLs are served from
``public_base_url`` (a CDN domain) when configured.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

import boto3  # type: ignore
from botocore.config import Config as BotoConfig  # type: ignore
from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

from mediaflow.common.resilience import retry_storage_operation
from mediaflow.storage.adapter import ObjectNotFound, ObjectStore, StorageError, UploadCredential

logger = logging.getLogger(__name__)

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3ObjectStore(ObjectStore):
    """
    S3-based storage implementation.

    Keys are stored verbatim: ``s3://{bucket}/{key}``.
    """

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        public_base_url: Optional[str] = None,
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        client=None,
    ):
        """
        Initialize S3 storage.

        Args:
            bucket: S3 bucket name
            region: AWS region
            access_key_id: AWS access key ID (default credential chain if None)
            secret_access_key: AWS secret access key
            public_base_url: CDN or website URL prefix for public links
            client: Preconfigured boto3 S3 client (tests)
        """
        self.bucket = bucket
        self.region = region
        self.public_base_url = (
            public_base_url.rstrip("/") if public_base_url
            else f"https://{bucket}.s3.{region}.amazonaws.com"
        )
        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
                config=BotoConfig(
                    connect_timeout=connect_timeout,
                    read_timeout=read_timeout,
                    retries={"max_attempts": 2, "mode": "standard"},
                ),
            )
        self.s3_client = client

    @retry_storage_operation
    def get_object(self, key: str) -> bytes:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                raise ObjectNotFound(f"Object not found: s3://{self.bucket}/{key}") from e
            raise StorageError(f"Failed to read s3://{self.bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read s3://{self.bucket}/{key}: {e}") from e

    @retry_storage_operation
    def put_object(self, key: str, data: bytes, content_type: str,
                   cache_control: Optional[str] = None) -> str:
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if cache_control:
            params["CacheControl"] = cache_control
        try:
            self.s3_client.put_object(**params)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to write s3://{self.bucket}/{key}: {e}") from e
        logger.debug(f"Uploaded s3://{self.bucket}/{key} ({len(data)} bytes)")
        return self.public_url(key)

    def delete_object(self, key: str) -> None:
        try:
            self.s3_client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete s3://{self.bucket}/{key}: {e}") from e

    def exists(self, key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                return False
            raise StorageError(f"Failed to stat s3://{self.bucket}/{key}: {e}") from e

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key.lstrip('/')}"

    def generate_upload_credential(self, key: str, content_type: str,
                                   expires_in: int) -> UploadCredential:
        try:
            url = self.s3_client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to presign upload for {key}: {e}") from e
        return UploadCredential(
            url=url,
            method="PUT",
            expires_at=datetime.utcnow() + timedelta(seconds=expires_in),
            headers={"Content-Type": content_type},
        )
