"""
Object Storage Service for invoice documents (MinIO, AWS S3, DigitalOcean Spaces).

Invoice documents are private: objects are written without a public ACL and
the stored key is returned as the attachment reference.
"""
import logging
import mimetypes
import uuid

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import ClientError
from flask import current_app

from payables.exceptions import ValidationError

logger = logging.getLogger(__name__)


def build_object_key(invoice_id, file_name) -> str:
    """invoices/<invoice_id>/<random>_<file name>"""
    safe_name = (file_name or 'document').replace('/', '_').replace('\\', '_').strip() or 'document'
    return f'invoices/{invoice_id}/{uuid.uuid4().hex[:12]}_{safe_name}'


def validate_upload(file_bytes: bytes, file_name: str, content_type: str, max_size=None, allowed_types=None):
    """
    Validate an uploaded document (size, type).

    Raises:
        ValidationError: If validation fails
    """
    if not file_bytes or not file_name:
        raise ValidationError({'file': 'No file was provided'})

    if max_size is None:
        max_size = current_app.config.get('MAX_UPLOAD_SIZE', 10 * 1024 * 1024)
    if len(file_bytes) > max_size:
        max_mb = max_size / (1024 * 1024)
        raise ValidationError({'file': f'File is too large. Maximum {max_mb:.1f}MB'})

    if allowed_types is None:
        allowed_types = current_app.config.get('ALLOWED_MIME_TYPES', set())
    content_type = content_type or mimetypes.guess_type(file_name)[0]
    if allowed_types and content_type not in allowed_types:
        raise ValidationError({
            'file': f"File type not allowed: {content_type}. Allowed: {', '.join(sorted(allowed_types))}"
        })
    return content_type


def _client_from_config(config):
    return boto3.client(
        's3',
        endpoint_url=config['S3_ENDPOINT'],
        aws_access_key_id=config['S3_ACCESS_KEY'],
        aws_secret_access_key=config['S3_SECRET_KEY'],
        region_name=config['S3_REGION'],
        config=BotoConfig(signature_version='s3v4', retries={'max_attempts': 3}),
    )


class StorageService:
    """
    Private document store on an S3-compatible bucket.

    store() returns the object key kept on InvoiceAttachment.storage_key;
    delete() is best effort and used to undo uploads whose transaction failed.
    """

    def __init__(self, client=None, bucket=None):
        self.bucket = bucket or current_app.config['S3_BUCKET']
        self.client = client or _client_from_config(current_app.config)
        self._bucket_ready = False

    def _prepare_bucket(self):
        if self._bucket_ready:
            return
        try:
            self.client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') not in ('404', 'NoSuchBucket'):
                raise
            logger.info(f"[STORAGE] Bucket '{self.bucket}' missing, creating it")
            self.client.create_bucket(Bucket=self.bucket)
        self._bucket_ready = True

    def store(self, file_bytes: bytes, invoice_id: int, uploader_id: int,
              file_name: str, content_type: str = None) -> str:
        """Write one invoice document and return its key. ClientError propagates."""
        self._prepare_bucket()
        key = build_object_key(invoice_id, file_name)
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=file_bytes,
            ContentType=content_type or mimetypes.guess_type(file_name)[0] or 'application/octet-stream',
            Metadata={'invoice-id': str(invoice_id), 'uploaded-by': str(uploader_id)},
        )
        logger.info(f"[STORAGE] Stored invoice {invoice_id} document as {key} ({len(file_bytes)} bytes)")
        return key

    def delete(self, object_name: str) -> bool:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=object_name)
        except ClientError:
            logger.exception(f"[STORAGE] Could not delete {object_name}")
            return False
        logger.info(f"[STORAGE] Deleted {object_name}")
        return True


_storage_service = None


def get_storage_service() -> StorageService:
    """Process-wide StorageService, built from the app config on first use."""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
