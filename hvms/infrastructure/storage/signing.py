"""
Signed retrieval URLs for identity proofs.

A signed URL is the only way a client ever reads an identity proof. The
signature binds the object name, read-only permission and the expiry, and
it is checked by the store when the URL is presented, not by this service.

Two signers share one contract:
- S3PresignedSigner: SigV4 query signing via botocore, for R2/S3
- HmacCredentialSigner: HMAC-SHA256 URLs checked by MockObjectStore

Lifetimes are a service constant. A caller may ask for a shorter link but
never a longer one.
"""

import base64
import hashlib
import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import parse_qs, urlencode, urlsplit

from botocore.exceptions import BotoCoreError, ClientError

from ...core.custody.errors import SigningUnavailableError, StorageUnavailableError
from ...core.custody.models import SignedRetrievalCredential
from .client import StorageConfig, object_url

logger = logging.getLogger(__name__)

DEFAULT_LIFETIME_SECONDS = 300
READ_PERMISSION = "r"
MIN_HMAC_SECRET_LENGTH = 16

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def to_epoch_micros(moment: datetime) -> int:
    """Exact unix time in microseconds. Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return (moment - _EPOCH) // _MICROSECOND


def from_epoch_micros(micros: int) -> datetime:
    return _EPOCH + timedelta(microseconds=micros)


def resolve_lifetime(requested: Optional[int], configured: int) -> int:
    """
    Pick the lifetime for one credential.

    Raises ValueError instead of extending past the configured constant.
    """
    if requested is None:
        return configured
    if isinstance(requested, bool) or not isinstance(requested, int) or requested <= 0:
        raise ValueError(f"Lifetime must be a positive number of seconds, got {requested!r}")
    if requested > configured:
        raise ValueError(
            f"Lifetime of {requested}s exceeds the maximum of {configured}s"
        )
    return requested


def compute_signature(
    secret: str,
    bucket: str,
    object_name: str,
    permission: str,
    expiry: int,
) -> str:
    """HMAC-SHA256 over everything the credential grants, urlsafe base64."""
    string_to_sign = "\n".join(["GET", bucket, object_name, permission, str(expiry)])
    digest = hmac.new(secret.encode(), string_to_sign.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def _check_lifetime_constant(lifetime_seconds: int) -> int:
    if isinstance(lifetime_seconds, bool) or not isinstance(lifetime_seconds, int) or lifetime_seconds <= 0:
        raise SigningUnavailableError(
            f"Configured URL lifetime must be a positive integer, got {lifetime_seconds!r}"
        )
    return lifetime_seconds


class S3PresignedSigner:
    """
    SigV4 presigned GET URLs for R2/S3.

    Owns its own boto3 client so the signing credentials are fixed at
    construction and shared read-only by every request afterwards.
    """

    def __init__(
        self,
        config: StorageConfig,
        lifetime_seconds: int = DEFAULT_LIFETIME_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if not config.access_key_id or not config.secret_access_key:
            raise SigningUnavailableError("Storage access key and secret are required for signing")
        if any(ch.isspace() for ch in config.access_key_id + config.secret_access_key):
            raise SigningUnavailableError("Storage credentials contain whitespace")

        try:
            import boto3
            from botocore.config import Config
        except ImportError:
            raise ImportError(
                "boto3 is required for signed URLs. Install with: pip install boto3"
            )

        self._bucket_name = config.bucket_name
        self._lifetime = _check_lifetime_constant(lifetime_seconds)
        self._clock = clock

        self._s3_client = boto3.client(
            's3',
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
            config=Config(
                signature_version='s3v4',
                s3={'addressing_style': 'path'},
            ),
        )

        logger.info(
            "Initialized SigV4 URL signer",
            extra={"bucket": config.bucket_name, "lifetime_seconds": self._lifetime}
        )

    @property
    def lifetime_seconds(self) -> int:
        return self._lifetime

    async def sign(
        self,
        object_name: str,
        lifetime: Optional[int] = None,
    ) -> SignedRetrievalCredential:
        seconds = resolve_lifetime(lifetime, self._lifetime)
        issued_at = self._clock()

        try:
            url = self._s3_client.generate_presigned_url(
                'get_object',
                Params={
                    'Bucket': self._bucket_name,
                    'Key': object_name,
                },
                ExpiresIn=seconds,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to generate presigned URL",
                extra={"object_name": object_name, "error": str(e)}
            )
            raise StorageUnavailableError(f"Presigned URL generation failed: {e}")

        signature = parse_qs(urlsplit(url).query).get("X-Amz-Signature", [""])[0]

        return SignedRetrievalCredential(
            object_name=object_name,
            expires_at=issued_at + timedelta(seconds=seconds),
            signature=signature,
            url=url,
        )


class HmacCredentialSigner:
    """
    HMAC-signed URLs for the in-memory store.

    URL query fields:
        se  - absolute expiry, unix microseconds
        sp  - permission, always "r"
        sig - signature over bucket, object name, permission and expiry
    """

    def __init__(
        self,
        secret: str,
        bucket_name: str,
        public_host: str = "storage.localhost",
        lifetime_seconds: int = DEFAULT_LIFETIME_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if not secret or len(secret) < MIN_HMAC_SECRET_LENGTH:
            raise SigningUnavailableError(
                f"Signing secret must be at least {MIN_HMAC_SECRET_LENGTH} characters"
            )

        self._secret = secret
        self._bucket_name = bucket_name
        self._base_url = f"https://{public_host}"
        self._lifetime = _check_lifetime_constant(lifetime_seconds)
        self._clock = clock

        logger.info(
            "Initialized HMAC URL signer",
            extra={"bucket": bucket_name, "lifetime_seconds": self._lifetime}
        )

    @property
    def lifetime_seconds(self) -> int:
        return self._lifetime

    async def sign(
        self,
        object_name: str,
        lifetime: Optional[int] = None,
    ) -> SignedRetrievalCredential:
        seconds = resolve_lifetime(lifetime, self._lifetime)
        expires_at = self._clock() + timedelta(seconds=seconds)
        expiry = to_epoch_micros(expires_at)

        signature = compute_signature(
            self._secret, self._bucket_name, object_name, READ_PERMISSION, expiry
        )
        query = urlencode({"se": expiry, "sp": READ_PERMISSION, "sig": signature})
        url = f"{object_url(self._base_url, self._bucket_name, object_name)}?{query}"

        return SignedRetrievalCredential(
            object_name=object_name,
            expires_at=from_epoch_micros(expiry),
            signature=signature,
            url=url,
        )


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_credential_signer(
    config: StorageConfig,
    lifetime_seconds: int = DEFAULT_LIFETIME_SECONDS,
    mock_mode: bool = False,
):
    """
    Create the signer matching the object store in use.

    Called once at startup. Missing key material fails here with
    SigningUnavailableError rather than on the first download request.
    """
    if mock_mode:
        return HmacCredentialSigner(
            secret=config.secret_access_key,
            bucket_name=config.bucket_name,
            public_host=config.public_host,
            lifetime_seconds=lifetime_seconds,
        )

    return S3PresignedSigner(config, lifetime_seconds=lifetime_seconds)
