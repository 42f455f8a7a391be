"""
S3 utility functions for message attachments.
Uploads attachment bytes and generates presigned URLs for the private bucket.
"""
import uuid
import boto3
from abc import ABC, abstractmethod
from typing import Optional
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from .config import config
from .errors import ExternalServiceFailure
from .logging import logger

ATTACHMENT_PREFIX = 'job-attachments/'


class BlobStore(ABC):
    """Opaque byte storage for attachments."""

    @abstractmethod
    def upload(self, data: bytes, key: str, content_type: Optional[str] = None) -> str:
        """Store ``data`` and return the reference to persist."""

    @abstractmethod
    def url_for(self, reference: str) -> str:
        """Turn a stored reference into a downloadable URL."""


def attachment_key(task_id: str, filename: str) -> str:
    """Build the object key for an attachment, keeping the file extension."""
    extension = ''
    if filename and '.' in filename:
        extension = '.' + filename.rsplit('.', 1)[-1].lower()
    return f"{ATTACHMENT_PREFIX}{task_id}/{uuid.uuid4()}{extension}"


class S3BlobStore(BlobStore):
    """BlobStore on a private S3 bucket; references are object keys."""

    def __init__(self, bucket_name: str, client=None):
        self.bucket_name = bucket_name
        # S3 client with custom signature version for presigned URLs
        self.client = client or boto3.client(
            's3',
            region_name=config.AWS_REGION,
            config=BotoConfig(
                signature_version='s3v4',
                connect_timeout=config.EXTERNAL_CALL_TIMEOUT_SECONDS,
                read_timeout=config.EXTERNAL_CALL_TIMEOUT_SECONDS,
                retries={'max_attempts': config.EXTERNAL_CALL_MAX_ATTEMPTS}
            )
        )

    @classmethod
    def from_config(cls) -> 'S3BlobStore':
        return cls(config.ATTACHMENTS_BUCKET)

    def upload(self, data: bytes, key: str, content_type: Optional[str] = None) -> str:
        params = {'Bucket': self.bucket_name, 'Key': key, 'Body': data}
        if content_type:
            params['ContentType'] = content_type
        try:
            self.client.put_object(**params)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Attachment upload {key} failed: {e}")
            raise ExternalServiceFailure(f"Attachment upload failed: {e}") from e
        logger.info(f"Uploaded attachment {key} ({len(data)} bytes)")
        return key

    def url_for(self, reference: str) -> str:
        return generate_presigned_url(self.client, reference, bucket_name=self.bucket_name)


def generate_presigned_url(
    s3_client,
    s3_key: str,
    expiration: int = None,
    bucket_name: str = None
) -> str:
    """
    Generate a presigned URL for S3 object download.

    Args:
        s3_client: boto3 S3 client
        s3_key: The S3 object key (e.g., 'job-attachments/<taskId>/uuid.png')
        expiration: URL expiration time in seconds (default from config)
        bucket_name: Optional bucket name, defaults to config.ATTACHMENTS_BUCKET

    Returns:
        Presigned URL string or original key if generation fails
    """
    if not s3_key:
        return s3_key

    bucket = bucket_name or config.ATTACHMENTS_BUCKET
    if not bucket:
        logger.warning("No ATTACHMENTS_BUCKET configured, returning original key")
        return s3_key

    try:
        return s3_client.generate_presigned_url(
            'get_object',
            Params={
                'Bucket': bucket,
                'Key': s3_key
            },
            ExpiresIn=expiration or config.PRESIGNED_URL_EXPIRATION
        )
    except ClientError as e:
        logger.error(f"Error generating presigned URL for {s3_key}: {e}")
        return s3_key
