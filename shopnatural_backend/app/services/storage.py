"""
Storage Service - S3-compatible object storage

Shipping labels are stored as private PDF objects keyed
{VENIPAK_LABEL_PREFIX}/{order_number}-{pack_no}.pdf. Supports AWS S3,
Cloudflare R2, MinIO, and other S3-compatible services.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


@dataclass
class UploadResult:
    """Result of a file upload."""
    success: bool
    key: Optional[str] = None
    error: Optional[str] = None
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None


def label_key(prefix: str, order_number: str, pack_no: str) -> str:
    """Object key of a shipping label."""
    return f"{prefix.strip('/')}/{order_number}-{pack_no}.pdf"


class StorageService:
    """
    S3-compatible storage service.

    Handles uploads to AWS S3, Cloudflare R2, or any S3-compatible service.
    The boto3 client can be injected (tests use a MagicMock).
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        region: Optional[str] = None,
        client=None,
    ):
        self._client = client
        self._bucket = bucket or settings.S3_BUCKET
        self._region = region or settings.S3_REGION

    @property
    def client(self):
        """Lazy-load S3 client."""
        if self._client is None:
            config = Config(
                signature_version='s3v4',
                retries={'max_attempts': 3, 'mode': 'standard'}
            )

            client_kwargs = {
                'service_name': 's3',
                'region_name': self._region,
                'aws_access_key_id': settings.S3_ACCESS_KEY or None,
                'aws_secret_access_key': settings.S3_SECRET_KEY or None,
                'config': config,
            }

            # Custom endpoint for R2/MinIO
            if settings.S3_ENDPOINT:
                client_kwargs['endpoint_url'] = settings.S3_ENDPOINT

            self._client = boto3.client(**client_kwargs)

        return self._client

    def is_configured(self) -> bool:
        """
        Check if S3 is configured.

        Missing access/secret keys are allowed to support IAM/role-based
        auth; boto3 falls back to the default credential chain.
        """
        return bool(self._bucket)

    async def put_object(
        self,
        key: str,
        body: bytes,
        content_type: str = PDF_CONTENT_TYPE,
    ) -> UploadResult:
        """
        Upload raw bytes under a fixed key, overwriting any previous object.

        Args:
            key: S3 key (path) for the object
            body: File content as bytes
            content_type: MIME type

        Returns:
            UploadResult with the key on success
        """
        if not self.is_configured():
            logger.error("S3 storage not configured")
            return UploadResult(success=False, error="Storage not configured")

        try:
            # Labels contain customer addresses: no public ACL
            self.client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            error_msg = e.response.get('Error', {}).get('Message', str(e))
            logger.error(f"S3 upload failed for {key}: {error_code} - {error_msg}")
            return UploadResult(success=False, key=key, error=f"Upload failed: {error_msg}")
        except BotoCoreError as e:
            logger.error(f"Storage upload error for {key}: {e}")
            return UploadResult(success=False, key=key, error=f"Upload failed: {e}")

        logger.info(f"Uploaded: {key} ({len(body)} bytes)")
        return UploadResult(
            success=True,
            key=key,
            content_type=content_type,
            size_bytes=len(body),
        )
