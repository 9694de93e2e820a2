"""MinIO object storage for uploaded import files and error reports."""
import io
import logging
from typing import Protocol

from minio import Minio
from minio.error import S3Error

from app.core.config import Settings

logger = logging.getLogger(__name__)


class FileStorage(Protocol):
    def upload(self, object_name: str, data: bytes, content_type: str) -> str: ...

    def download(self, object_name: str) -> bytes: ...


class MinioFileStorage:
    """Bucket-bound MinIO wrapper. Built once at start-up and injected."""

    def __init__(self, client: Minio, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_settings(cls, settings: Settings) -> "MinioFileStorage":
        client = Minio(
            endpoint=settings.MINIO_ENDPOINT,
            access_key=settings.MINIO_ACCESS_KEY,
            secret_key=settings.MINIO_SECRET_KEY,
            secure=settings.MINIO_SECURE,
        )
        return cls(client, settings.MINIO_BUCKET_NAME)

    # ─── Bucket bootstrap ───

    def ensure_bucket(self) -> None:
        """Create the bucket if it does not already exist. Called on startup."""
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
                logger.info("Created MinIO bucket: %s", self.bucket)
            else:
                logger.debug("MinIO bucket already exists: %s", self.bucket)
        except S3Error as exc:
            logger.error("Failed to ensure MinIO bucket %s: %s", self.bucket, exc)
            raise

    # ─── Core operations ───

    def upload(self, object_name: str, data: bytes, content_type: str) -> str:
        """Store bytes under ``object_name``. Returns the object path."""
        self.client.put_object(
            bucket_name=self.bucket,
            object_name=object_name,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        logger.info("Uploaded %s/%s (%d bytes)", self.bucket, object_name, len(data))
        return object_name

    def download(self, object_name: str) -> bytes:
        response = self.client.get_object(bucket_name=self.bucket, object_name=object_name)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()
