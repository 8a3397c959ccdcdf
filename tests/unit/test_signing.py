"""
Unit tests for signed retrieval URLs.

The HMAC signer is checked end to end against MockObjectStore, which
verifies URLs the way a real store would. The SigV4 signer is checked
offline: botocore presigns without any network access.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlencode, urlsplit, urlunsplit

import pytest

from hvms.core.custody.errors import SigningUnavailableError
from hvms.infrastructure.storage.client import (
    CredentialRejectedError,
    MockObjectStore,
    StorageConfig,
)
from hvms.infrastructure.storage.signing import (
    DEFAULT_LIFETIME_SECONDS,
    HmacCredentialSigner,
    S3PresignedSigner,
    create_credential_signer,
    resolve_lifetime,
    to_epoch_micros,
)

SECRET = "test-signing-secret-0123456789"
BUCKET = "visitor-ids"
ISSUED_AT = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
ISSUED_AT_FRACTIONAL = datetime(2026, 10, 19, 10, 0, 0, 700000, tzinfo=timezone.utc)
OBJECT_A = "visitor-1/20261019T120000000000Z-aaaa-passport.png"
OBJECT_B = "visitor-2/20261019T120000000000Z-bbbb-licence.png"


@pytest.fixture
def signer():
    return HmacCredentialSigner(
        secret=SECRET,
        bucket_name=BUCKET,
        clock=lambda: ISSUED_AT,
    )


@pytest.fixture
def store():
    return MockObjectStore(bucket_name=BUCKET, signing_secret=SECRET)


def _sign(signer, object_name, lifetime=None):
    return asyncio.run(signer.sign(object_name, lifetime))


def _with_query(url: str, **overrides) -> str:
    parts = urlsplit(url)
    query = {key: values[0] for key, values in parse_qs(parts.query).items()}
    query.update(overrides)
    return urlunsplit(parts._replace(query=urlencode(query)))


def _with_path(url: str, path: str) -> str:
    return urlunsplit(urlsplit(url)._replace(path=path))


# ---------------------------------------------------------------------------
# Lifetime Tests
# ---------------------------------------------------------------------------

class TestResolveLifetime:
    """Tests for picking a credential's lifetime."""

    def test_defaults_to_configured(self):
        assert resolve_lifetime(None, 300) == 300

    def test_shorter_lifetime_is_honoured(self):
        assert resolve_lifetime(60, 300) == 60

    def test_longer_lifetime_is_rejected_not_clamped(self):
        with pytest.raises(ValueError, match="exceeds"):
            resolve_lifetime(301, 300)

    @pytest.mark.parametrize("requested", [0, -5, True, "60"])
    def test_invalid_lifetimes_are_rejected(self, requested):
        with pytest.raises(ValueError):
            resolve_lifetime(requested, 300)


# ---------------------------------------------------------------------------
# HMAC Signer Tests
# ---------------------------------------------------------------------------

class TestHmacCredentialSigner:
    """Tests for HMAC-signed URLs as verified by the in-memory store."""

    def test_credential_expires_after_configured_lifetime(self, signer):
        credential = _sign(signer, OBJECT_A)

        assert credential.object_name == OBJECT_A
        assert credential.expires_at == ISSUED_AT + timedelta(seconds=DEFAULT_LIFETIME_SECONDS)
        assert credential.signature in credential.url

    def test_url_is_path_style_and_read_only(self, signer):
        credential = _sign(signer, OBJECT_A)
        parts = urlsplit(credential.url)
        query = parse_qs(parts.query)

        assert parts.path == f"/{BUCKET}/{OBJECT_A}"
        assert query["sp"] == ["r"]
        assert query["se"] == [str(to_epoch_micros(credential.expires_at))]

    def test_accepted_before_expiry(self, signer, store):
        """Scenario: a credential presented within its lifetime grants access."""
        credential = _sign(signer, OBJECT_A)

        granted = store.verify_credential(credential.url, now=ISSUED_AT + timedelta(seconds=299))

        assert granted == OBJECT_A

    def test_accepted_at_exact_expiry(self, signer, store):
        credential = _sign(signer, OBJECT_A)

        assert store.verify_credential(credential.url, now=credential.expires_at) == OBJECT_A

    def test_rejected_after_expiry(self, signer, store):
        """Scenario: the same credential presented after 301 seconds is refused."""
        credential = _sign(signer, OBJECT_A)

        with pytest.raises(CredentialRejectedError, match="expired"):
            store.verify_credential(credential.url, now=ISSUED_AT + timedelta(seconds=301))

        assert credential.is_expired(ISSUED_AT + timedelta(seconds=301))

    def test_fractional_issue_time_keeps_full_lifetime(self, store):
        """Issued at .7s, the credential stays valid until exactly .7s past the deadline second."""
        signer = HmacCredentialSigner(
            secret=SECRET,
            bucket_name=BUCKET,
            clock=lambda: ISSUED_AT_FRACTIONAL,
        )
        deadline = ISSUED_AT_FRACTIONAL + timedelta(seconds=DEFAULT_LIFETIME_SECONDS)

        credential = _sign(signer, OBJECT_A)

        assert credential.expires_at == deadline
        assert store.verify_credential(credential.url, now=deadline - timedelta(milliseconds=200)) == OBJECT_A
        assert store.verify_credential(credential.url, now=deadline) == OBJECT_A
        with pytest.raises(CredentialRejectedError, match="expired"):
            store.verify_credential(credential.url, now=deadline + timedelta(microseconds=1))

    def test_naive_verification_time_is_taken_as_utc(self, signer, store):
        credential = _sign(signer, OBJECT_A)
        naive_deadline = credential.expires_at.replace(tzinfo=None)

        assert store.verify_credential(credential.url, now=naive_deadline) == OBJECT_A

    def test_credential_for_one_object_does_not_open_another(self, signer, store):
        credential = _sign(signer, OBJECT_A)
        forged = _with_path(credential.url, f"/{BUCKET}/{OBJECT_B}")

        with pytest.raises(CredentialRejectedError, match="Signature mismatch"):
            store.verify_credential(forged, now=ISSUED_AT)

    def test_extended_expiry_is_rejected(self, signer, store):
        credential = _sign(signer, OBJECT_A)
        expiry = to_epoch_micros(credential.expires_at)
        tampered = _with_query(credential.url, se=str(expiry + 3_600_000_000))

        with pytest.raises(CredentialRejectedError, match="Signature mismatch"):
            store.verify_credential(tampered, now=ISSUED_AT)

    def test_changed_permission_is_rejected(self, signer, store):
        credential = _sign(signer, OBJECT_A)
        tampered = _with_query(credential.url, sp="w")

        with pytest.raises(CredentialRejectedError):
            store.verify_credential(tampered, now=ISSUED_AT)

    def test_other_bucket_is_rejected(self, signer, store):
        credential = _sign(signer, OBJECT_A)
        moved = _with_path(credential.url, f"/other-bucket/{OBJECT_A}")

        with pytest.raises(CredentialRejectedError, match="another bucket"):
            store.verify_credential(moved, now=ISSUED_AT)

    def test_missing_fields_are_rejected(self, store):
        with pytest.raises(CredentialRejectedError, match="missing"):
            store.verify_credential(f"https://storage.localhost/{BUCKET}/{OBJECT_A}")

    def test_shorter_requested_lifetime(self, signer):
        credential = _sign(signer, OBJECT_A, lifetime=60)

        assert credential.expires_at == ISSUED_AT + timedelta(seconds=60)

    def test_longer_requested_lifetime_raises(self, signer):
        with pytest.raises(ValueError):
            _sign(signer, OBJECT_A, lifetime=DEFAULT_LIFETIME_SECONDS + 1)

    def test_read_signed_serves_the_object(self, signer, store):
        asyncio.run(store.put(OBJECT_A, b"passport-bytes", "image/png"))
        credential = _sign(signer, OBJECT_A)

        data = asyncio.run(store.read_signed(credential.url, now=ISSUED_AT))

        assert data == b"passport-bytes"

    @pytest.mark.parametrize("secret", ["", "too-short"])
    def test_missing_or_weak_secret_fails_at_construction(self, secret):
        with pytest.raises(SigningUnavailableError):
            HmacCredentialSigner(secret=secret, bucket_name=BUCKET)

    def test_invalid_lifetime_constant_fails_at_construction(self):
        with pytest.raises(SigningUnavailableError):
            HmacCredentialSigner(secret=SECRET, bucket_name=BUCKET, lifetime_seconds=0)


# ---------------------------------------------------------------------------
# SigV4 Signer Tests
# ---------------------------------------------------------------------------

def _storage_config(**overrides) -> StorageConfig:
    values = dict(
        access_key_id="AKIDEXAMPLE",
        secret_access_key="wJalrXUtnFEMI/K7MDENG/bPxRfiCYEXAMPLEKEY",
        bucket_name=BUCKET,
        endpoint_url="https://example-account.r2.cloudflarestorage.com",
    )
    values.update(overrides)
    return StorageConfig(**values)


class TestS3PresignedSigner:
    """Tests for SigV4 presigned URLs."""

    def test_presigned_url_carries_expiry_and_signature(self):
        signer = S3PresignedSigner(_storage_config(), clock=lambda: ISSUED_AT)

        credential = asyncio.run(signer.sign(OBJECT_A))
        query = parse_qs(urlsplit(credential.url).query)

        assert query["X-Amz-Expires"] == [str(DEFAULT_LIFETIME_SECONDS)]
        assert credential.signature
        assert query["X-Amz-Signature"] == [credential.signature]
        assert credential.expires_at == ISSUED_AT + timedelta(seconds=DEFAULT_LIFETIME_SECONDS)

    def test_url_targets_the_object_path_style(self):
        signer = S3PresignedSigner(_storage_config())

        credential = asyncio.run(signer.sign(OBJECT_A))

        assert urlsplit(credential.url).path == f"/{BUCKET}/{OBJECT_A}"

    def test_longer_requested_lifetime_raises(self):
        signer = S3PresignedSigner(_storage_config(), lifetime_seconds=120)

        with pytest.raises(ValueError):
            asyncio.run(signer.sign(OBJECT_A, lifetime=121))

    @pytest.mark.parametrize("overrides", [
        {"access_key_id": ""},
        {"secret_access_key": ""},
        {"secret_access_key": "has whitespace"},
    ])
    def test_missing_key_material_fails_at_construction(self, overrides):
        with pytest.raises(SigningUnavailableError):
            S3PresignedSigner(_storage_config(**overrides))


class TestCreateCredentialSigner:
    """Tests for the signer factory."""

    def test_mock_mode_builds_hmac_signer(self):
        signer = create_credential_signer(
            _storage_config(secret_access_key=SECRET), mock_mode=True
        )

        assert isinstance(signer, HmacCredentialSigner)

    def test_real_mode_builds_sigv4_signer(self):
        signer = create_credential_signer(_storage_config(), lifetime_seconds=60)

        assert isinstance(signer, S3PresignedSigner)
        assert signer.lifetime_seconds == 60

    def test_mock_mode_without_secret_fails(self):
        with pytest.raises(SigningUnavailableError):
            create_credential_signer(_storage_config(secret_access_key=""), mock_mode=True)
