"""
Object storage gateway for identity-proof images.

Supports Cloudflare R2 (S3-compatible) with mock mode for local development.
The bucket is private: the only sanctioned read path for clients is a
signed URL from storage.signing. Nothing here ever returns a public link.

Mock mode stores objects in memory and also plays the part of the store
when a signed URL is presented, so the signing contract can be tested
without provisioning real object storage.
"""

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Optional
from urllib.parse import parse_qs, quote, unquote, urlsplit

from botocore.exceptions import BotoCoreError, ClientError

from ...core.custody.errors import ObjectNotFoundError, StorageUnavailableError
from ...core.custody.models import normalize_content_type
from ...core.custody.orchestrator import ObjectStore

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 64 * 1024

_MISSING_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}


class CredentialRejectedError(Exception):
    """Raised by the store when a signed URL is tampered with or expired."""
    pass


@dataclass
class StorageConfig:
    """
    Configuration for R2/S3-compatible storage.

    Built once from Settings at startup and handed to the gateway and the
    signer. Neither of them reads the environment.
    """
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    endpoint_url: str
    region: str = "auto"  # R2 uses 'auto' for region
    public_host: str = "storage.localhost"


def _is_missing(error: ClientError) -> bool:
    code = str(error.response.get("Error", {}).get("Code", ""))
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in _MISSING_CODES or status == 404


class R2ObjectStore:
    """
    Cloudflare R2 object store.

    Uses boto3 because R2 is S3-compatible, so AWS S3 or MinIO work with
    only an endpoint change.

    All methods are async to match the Protocol even though boto3 is
    synchronous. This keeps the interface consistent with truly async
    storage clients.
    """

    def __init__(self, config: StorageConfig) -> None:
        """
        Initialize the R2 client with boto3.

        boto3 is imported here (not at module level) because mock mode
        never needs a client.
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
            "Initialized R2 object store",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
            }
        )

    async def ensure_namespace(self) -> None:
        """
        Create the bucket on first use.

        No ACL is passed, so the bucket keeps the store's private default.
        """
        bucket = self._config.bucket_name

        try:
            self._s3_client.head_bucket(Bucket=bucket)
            return
        except ClientError as e:
            if not _is_missing(e):
                logger.error(
                    "Failed to check bucket",
                    extra={"bucket": bucket, "error": str(e)}
                )
                raise StorageUnavailableError(f"Bucket check failed: {e}")
        except BotoCoreError as e:
            raise StorageUnavailableError(f"Bucket check failed: {e}")

        try:
            self._s3_client.create_bucket(Bucket=bucket)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            # someone else created it between our head and create
            if code in ("BucketAlreadyOwnedByYou", "BucketAlreadyExists"):
                return
            logger.error(
                "Failed to create bucket",
                extra={"bucket": bucket, "error": str(e)}
            )
            raise StorageUnavailableError(f"Bucket creation failed: {e}")
        except BotoCoreError as e:
            raise StorageUnavailableError(f"Bucket creation failed: {e}")

        logger.info("Created private bucket", extra={"bucket": bucket})

    async def put(self, object_name: str, data: bytes, content_type: str) -> str:
        """
        Upload an identity proof.

        Overwrites are technically possible but never happen in practice:
        the name allocator hands out each name once.
        """
        content_type = normalize_content_type(content_type)

        try:
            self._s3_client.put_object(
                Bucket=self._config.bucket_name,
                Key=object_name,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to upload identity proof",
                extra={"object_name": object_name, "error": str(e)}
            )
            raise StorageUnavailableError(f"Upload failed: {e}")

        logger.info(
            "Uploaded identity proof",
            extra={
                "object_name": object_name,
                "content_type": content_type,
                "size_bytes": len(data),
            }
        )

        return f"s3://{self._config.bucket_name}/{object_name}"

    async def exists(self, object_name: str) -> bool:
        try:
            self._s3_client.head_object(
                Bucket=self._config.bucket_name,
                Key=object_name,
            )
            return True
        except ClientError as e:
            if _is_missing(e):
                return False
            logger.error(
                "Failed to check object",
                extra={"object_name": object_name, "error": str(e)}
            )
            raise StorageUnavailableError(f"Existence check failed: {e}")
        except BotoCoreError as e:
            raise StorageUnavailableError(f"Existence check failed: {e}")

    async def get_content_type(self, object_name: str) -> str:
        try:
            response = self._s3_client.head_object(
                Bucket=self._config.bucket_name,
                Key=object_name,
            )
        except ClientError as e:
            if _is_missing(e):
                raise ObjectNotFoundError(f"Object not found: {object_name}")
            raise StorageUnavailableError(f"Metadata lookup failed: {e}")
        except BotoCoreError as e:
            raise StorageUnavailableError(f"Metadata lookup failed: {e}")

        return response.get("ContentType") or "application/octet-stream"

    async def open_read_stream(self, object_name: str) -> Iterator[bytes]:
        """Stream the object in chunks instead of loading it into memory."""
        try:
            response = self._s3_client.get_object(
                Bucket=self._config.bucket_name,
                Key=object_name,
            )
        except ClientError as e:
            if _is_missing(e):
                raise ObjectNotFoundError(f"Object not found: {object_name}")
            logger.error(
                "Failed to download identity proof",
                extra={"object_name": object_name, "error": str(e)}
            )
            raise StorageUnavailableError(f"Download failed: {e}")
        except BotoCoreError as e:
            raise StorageUnavailableError(f"Download failed: {e}")

        return response['Body'].iter_chunks(chunk_size=STREAM_CHUNK_SIZE)

    async def delete(self, object_name: str) -> None:
        try:
            self._s3_client.delete_object(
                Bucket=self._config.bucket_name,
                Key=object_name,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to delete object",
                extra={"object_name": object_name, "error": str(e)}
            )
            raise StorageUnavailableError(f"Delete failed: {e}")

        logger.info("Deleted object", extra={"object_name": object_name})


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

class MockObjectStore:
    """
    In-memory object store for local development and tests.

    Objects live in a dict keyed by object name. When given the signing
    secret it can also check signed URLs the way a real store would,
    which is what makes expiry and tampering testable offline.

    Not suitable for production.
    """

    def __init__(
        self,
        bucket_name: str = "visitor-ids",
        signing_secret: Optional[str] = None,
    ) -> None:
        # {object_name: (data, content_type)}
        self._objects: dict[str, tuple[bytes, str]] = {}
        self._bucket_name = bucket_name
        self._signing_secret = signing_secret
        self._namespace_created = False
        logger.info("Initialized mock object store (in-memory)")

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    async def ensure_namespace(self) -> None:
        if not self._namespace_created:
            self._namespace_created = True
            logger.debug("Created mock bucket", extra={"bucket": self._bucket_name})

    async def put(self, object_name: str, data: bytes, content_type: str) -> str:
        content_type = normalize_content_type(content_type)
        self._objects[object_name] = (bytes(data), content_type)

        logger.debug(
            "Stored object in mock storage",
            extra={"object_name": object_name, "size_bytes": len(data)}
        )

        return f"s3://{self._bucket_name}/{object_name}"

    async def exists(self, object_name: str) -> bool:
        return object_name in self._objects

    async def get_content_type(self, object_name: str) -> str:
        if object_name not in self._objects:
            raise ObjectNotFoundError(f"Object not found: {object_name}")
        return self._objects[object_name][1]

    async def open_read_stream(self, object_name: str) -> Iterator[bytes]:
        if object_name not in self._objects:
            raise ObjectNotFoundError(f"Object not found: {object_name}")
        data = self._objects[object_name][0]
        return iter([data[i:i + STREAM_CHUNK_SIZE] for i in range(0, len(data), STREAM_CHUNK_SIZE)])

    async def delete(self, object_name: str) -> None:
        self._objects.pop(object_name, None)

    def verify_credential(self, url: str, now: Optional[datetime] = None) -> str:
        """
        Check a signed URL the way the store would on presentation.

        Returns the object name it grants access to. Raises
        CredentialRejectedError if the URL was signed for another bucket or
        object, was altered, lacks read permission, or has expired.
        """
        from .signing import compute_signature, to_epoch_micros

        if not self._signing_secret:
            raise CredentialRejectedError("Store has no signing secret configured")

        parts = urlsplit(url)
        bucket, _, encoded_name = parts.path.lstrip("/").partition("/")
        object_name = unquote(encoded_name)
        query = parse_qs(parts.query)

        try:
            expiry = int(query["se"][0])
            permission = query["sp"][0]
            signature = query["sig"][0]
        except (KeyError, IndexError, ValueError):
            raise CredentialRejectedError("Signed URL is missing required fields")

        if bucket != self._bucket_name:
            raise CredentialRejectedError("Signed URL targets another bucket")

        expected = compute_signature(
            self._signing_secret, bucket, object_name, permission, expiry
        )
        if not _constant_time_equals(expected, signature):
            raise CredentialRejectedError("Signature mismatch")

        if permission != "r":
            raise CredentialRejectedError("Signed URL does not grant read access")

        now = now or datetime.now(timezone.utc)
        if to_epoch_micros(now) > expiry:
            raise CredentialRejectedError("Signed URL has expired")

        return object_name

    async def read_signed(self, url: str, now: Optional[datetime] = None) -> bytes:
        """Serve the object behind a signed URL, as the real store would."""
        object_name = self.verify_credential(url, now)
        if object_name not in self._objects:
            raise ObjectNotFoundError(f"Object not found: {object_name}")
        return self._objects[object_name][0]

    # Helper methods for testing
    def _remove_out_of_band(self, object_name: str) -> None:
        """Simulate an object deleted directly in storage (for tests)."""
        self._objects.pop(object_name, None)

    def _clear(self) -> None:
        self._objects.clear()


def _constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def object_url(scheme_host: str, bucket: str, object_name: str) -> str:
    """Path-style URL of an object, without any credential."""
    return f"{scheme_host.rstrip('/')}/{bucket}/{quote(object_name, safe='/')}"


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_object_store(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> ObjectStore:
    """
    Create the object store based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode; in mock
            mode it supplies the bucket name and signing secret)
        mock_mode: If True, return the in-memory store

    Returns:
        ObjectStore implementation (R2 or Mock)
    """
    if mock_mode:
        if config is None:
            return MockObjectStore()
        return MockObjectStore(
            bucket_name=config.bucket_name,
            signing_secret=config.secret_access_key or None,
        )

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return R2ObjectStore(config)
