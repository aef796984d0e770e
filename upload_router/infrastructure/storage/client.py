"""
Object storage client for multipart uploads.

Supports Cloudflare R2 (S3-compatible) with mock mode for local development.
The operations mirror the R2 bucket binding: create a multipart upload,
resume it by key and upload id, upload parts, complete or abort it, and
get or delete whole objects.

Mock mode keeps uploads and objects in memory, enabling API testing without
provisioning actual object storage.
"""

import email.utils
import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Optional, Protocol

from ...core.models import CompletedObject, StoredObject, UploadedPart, UploadTarget

logger = logging.getLogger(__name__)

# S3 response fields copied onto GET responses, keyed by HTTP header name
HTTP_METADATA_FIELDS = {
    "content-type": "ContentType",
    "content-language": "ContentLanguage",
    "content-disposition": "ContentDisposition",
    "content-encoding": "ContentEncoding",
    "cache-control": "CacheControl",
    "expires": "Expires",
}

DOWNLOAD_CHUNK_SIZE = 64 * 1024


class StorageError(Exception):
    """Raised when storage operations fail."""
    pass


@dataclass
class StorageConfig:
    """Configuration for R2/S3-compatible storage."""
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    endpoint_url: str
    region: str = "auto"  # R2 uses 'auto' for region


class MultipartUpload(Protocol):
    """Handle on an in-progress multipart upload."""

    key: str
    upload_id: str

    async def upload_part(self, part_number: int, data: bytes) -> UploadedPart:
        """Upload one part and return its number and etag."""
        ...

    async def complete(self, parts: list[UploadedPart]) -> CompletedObject:
        """Assemble the listed parts into the final object."""
        ...

    async def abort(self) -> None:
        """Discard the upload and any parts already stored."""
        ...


class StorageClient(Protocol):
    """
    Protocol for object storage operations.

    Tests provide the mock implementation; production uses R2.
    """

    async def create_multipart_upload(self, key: str) -> UploadTarget:
        """Start a multipart upload for key."""
        ...

    def resume_multipart_upload(self, key: str, upload_id: str) -> MultipartUpload:
        """Return a handle on an existing upload. Does not touch the network."""
        ...

    async def get_object(self, key: str) -> Optional[StoredObject]:
        """Fetch an object, or None if it does not exist."""
        ...

    async def delete_object(self, key: str) -> None:
        """Delete an object. Deleting a missing key is not an error."""
        ...


def _error_code(error: Exception) -> str:
    """Extract the S3 error code from a botocore ClientError."""
    response = getattr(error, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))


def _format_metadata_value(value: Any) -> str:
    if isinstance(value, datetime):
        return email.utils.format_datetime(value, usegmt=True)
    return str(value)


async def _iter_body(body: Any, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Yield a botocore StreamingBody in chunks, closing it when done."""
    try:
        for chunk in body.iter_chunks(chunk_size):
            yield chunk
    finally:
        body.close()


class R2MultipartUpload:
    """Multipart upload handle backed by the S3 API."""

    def __init__(self, s3_client: Any, bucket_name: str, key: str, upload_id: str) -> None:
        self._s3_client = s3_client
        self._bucket_name = bucket_name
        self.key = key
        self.upload_id = upload_id

    async def upload_part(self, part_number: int, data: bytes) -> UploadedPart:
        try:
            response = self._s3_client.upload_part(
                Bucket=self._bucket_name,
                Key=self.key,
                UploadId=self.upload_id,
                PartNumber=part_number,
                Body=data,
            )
        except Exception as e:
            logger.error(
                "Failed to upload part",
                extra={
                    "key": self.key,
                    "upload_id": self.upload_id,
                    "part_number": part_number,
                    "error": str(e),
                }
            )
            raise StorageError(f"Part upload failed: {e}")

        logger.debug(
            "Uploaded part",
            extra={
                "key": self.key,
                "part_number": part_number,
                "size_bytes": len(data),
            }
        )
        return UploadedPart(part_number=part_number, etag=response["ETag"])

    async def complete(self, parts: list[UploadedPart]) -> CompletedObject:
        try:
            response = self._s3_client.complete_multipart_upload(
                Bucket=self._bucket_name,
                Key=self.key,
                UploadId=self.upload_id,
                MultipartUpload={
                    "Parts": [
                        {"PartNumber": part.part_number, "ETag": part.etag}
                        for part in sorted(parts, key=lambda p: p.part_number)
                    ]
                },
            )
        except Exception as e:
            logger.error(
                "Failed to complete multipart upload",
                extra={"key": self.key, "upload_id": self.upload_id, "error": str(e)}
            )
            raise StorageError(f"Complete failed: {e}")

        logger.info(
            "Completed multipart upload",
            extra={"key": self.key, "parts": len(parts)}
        )
        return CompletedObject(key=self.key, etag=response["ETag"])

    async def abort(self) -> None:
        try:
            self._s3_client.abort_multipart_upload(
                Bucket=self._bucket_name,
                Key=self.key,
                UploadId=self.upload_id,
            )
        except Exception as e:
            logger.error(
                "Failed to abort multipart upload",
                extra={"key": self.key, "upload_id": self.upload_id, "error": str(e)}
            )
            raise StorageError(f"Abort failed: {e}")

        logger.info("Aborted multipart upload", extra={"key": self.key})


class R2StorageClient:
    """
    Cloudflare R2 object storage client.

    Uses boto3 because R2 is S3-compatible, so the same client works
    against S3 or MinIO.

    All methods are async to match the Protocol even though boto3 is
    synchronous.
    """

    def __init__(self, config: StorageConfig) -> None:
        """
        Initialize R2 client with boto3.

        boto3 is imported here, not at module level, so mock mode runs
        without it.
        """
        try:
            import boto3
            from botocore.config import Config
        except ImportError:
            raise ImportError(
                "boto3 is required for R2 storage. Install with: pip install boto3"
            )

        self._config = config

        # R2 requires v4 signatures and path-style addressing
        boto_config = Config(
            signature_version='s3v4',
            s3={'addressing_style': 'path'},
        )

        self._s3_client = boto3.client(
            's3',
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
            config=boto_config,
        )

        logger.info(
            "Initialized R2 storage client",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
            }
        )

    async def create_multipart_upload(self, key: str) -> UploadTarget:
        try:
            response = self._s3_client.create_multipart_upload(
                Bucket=self._config.bucket_name,
                Key=key,
            )
        except Exception as e:
            logger.error(
                "Failed to create multipart upload",
                extra={"key": key, "error": str(e)}
            )
            raise StorageError(f"Create failed: {e}")

        logger.info(
            "Created multipart upload",
            extra={"key": key, "upload_id": response["UploadId"]}
        )
        return UploadTarget(key=response.get("Key", key), upload_id=response["UploadId"])

    def resume_multipart_upload(self, key: str, upload_id: str) -> R2MultipartUpload:
        return R2MultipartUpload(self._s3_client, self._config.bucket_name, key, upload_id)

    async def get_object(self, key: str) -> Optional[StoredObject]:
        try:
            response = self._s3_client.get_object(
                Bucket=self._config.bucket_name,
                Key=key,
            )
        except Exception as e:
            if _error_code(e) in ("NoSuchKey", "404"):
                return None
            logger.error(
                "Failed to get object",
                extra={"key": key, "error": str(e)}
            )
            raise StorageError(f"Download failed: {e}")

        http_metadata = {
            header: _format_metadata_value(response[field])
            for header, field in HTTP_METADATA_FIELDS.items()
            if response.get(field) is not None
        }
        return StoredObject(
            key=key,
            body=_iter_body(response["Body"]),
            etag=response["ETag"],
            size=response.get("ContentLength"),
            http_metadata=http_metadata,
        )

    async def delete_object(self, key: str) -> None:
        try:
            self._s3_client.delete_object(
                Bucket=self._config.bucket_name,
                Key=key,
            )
        except Exception as e:
            logger.error(
                "Failed to delete object",
                extra={"key": key, "error": str(e)}
            )
            raise StorageError(f"Delete failed: {e}")

        logger.info("Deleted object", extra={"key": key})


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

@dataclass
class _PendingUpload:
    key: str
    parts: dict[int, tuple[str, bytes]]


class MockMultipartUpload:
    """Multipart upload handle over MockStorageClient's dictionaries."""

    def __init__(self, storage: "MockStorageClient", key: str, upload_id: str) -> None:
        self._storage = storage
        self.key = key
        self.upload_id = upload_id

    def _pending(self) -> _PendingUpload:
        pending = self._storage._uploads.get(self.upload_id)
        if pending is None or pending.key != self.key:
            raise StorageError(f"Multipart upload does not exist: {self.upload_id}")
        return pending

    async def upload_part(self, part_number: int, data: bytes) -> UploadedPart:
        pending = self._pending()
        etag = hashlib.md5(data).hexdigest()
        pending.parts[part_number] = (etag, data)
        return UploadedPart(part_number=part_number, etag=etag)

    async def complete(self, parts: list[UploadedPart]) -> CompletedObject:
        pending = self._pending()
        if not parts:
            raise StorageError("No parts to complete")

        ordered = sorted(parts, key=lambda p: p.part_number)
        chunks = []
        digests = b""
        for part in ordered:
            stored = pending.parts.get(part.part_number)
            if stored is None or stored[0] != part.etag.strip('"'):
                raise StorageError(f"Invalid part: {part.part_number}")
            chunks.append(stored[1])
            digests += bytes.fromhex(stored[0])

        # Same shape as S3 multipart etags: md5 of part md5s, dash, part count
        etag = f"{hashlib.md5(digests).hexdigest()}-{len(ordered)}"
        self._storage._objects[self.key] = (etag, b"".join(chunks))
        del self._storage._uploads[self.upload_id]
        return CompletedObject(key=self.key, etag=etag)

    async def abort(self) -> None:
        self._pending()
        del self._storage._uploads[self.upload_id]


class MockStorageClient:
    """
    In-memory storage for local development.

    This mock enables testing the full API flow without provisioning
    real object storage. Pending uploads and finished objects are stored
    in dictionaries.

    Not suitable for production.
    """

    def __init__(self) -> None:
        self._uploads: dict[str, _PendingUpload] = {}
        self._objects: dict[str, tuple[str, bytes]] = {}
        logger.info("Initialized mock storage client (in-memory)")

    async def create_multipart_upload(self, key: str) -> UploadTarget:
        upload_id = uuid.uuid4().hex
        self._uploads[upload_id] = _PendingUpload(key=key, parts={})
        logger.debug(
            "Created multipart upload in mock storage",
            extra={"key": key, "upload_id": upload_id}
        )
        return UploadTarget(key=key, upload_id=upload_id)

    def resume_multipart_upload(self, key: str, upload_id: str) -> MockMultipartUpload:
        return MockMultipartUpload(self, key, upload_id)

    async def get_object(self, key: str) -> Optional[StoredObject]:
        stored = self._objects.get(key)
        if stored is None:
            return None
        etag, data = stored
        return StoredObject(
            key=key,
            body=data,
            etag=etag,
            size=len(data),
            http_metadata={"content-type": "application/octet-stream"},
        )

    async def delete_object(self, key: str) -> None:
        self._objects.pop(key, None)

    async def put_object(self, key: str, data: bytes) -> None:
        """Store a whole object directly. Used to seed local data."""
        self._objects[key] = (hashlib.md5(data).hexdigest(), data)


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> StorageClient:
    """
    Create storage client based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return mock client for testing

    Returns:
        StorageClient implementation (R2 or Mock)
    """
    if mock_mode:
        return MockStorageClient()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return R2StorageClient(config)
