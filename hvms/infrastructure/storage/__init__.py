"""
Object storage integration for identity proofs.

Supports R2 (Cloudflare) and S3 (AWS) via the S3-compatible API, plus
signed retrieval URLs. Includes mock mode for local development.
"""

from .client import (
    CredentialRejectedError,
    MockObjectStore,
    R2ObjectStore,
    StorageConfig,
    create_object_store,
)
from .signing import (
    HmacCredentialSigner,
    S3PresignedSigner,
    create_credential_signer,
)

__all__ = [
    "CredentialRejectedError",
    "HmacCredentialSigner",
    "MockObjectStore",
    "R2ObjectStore",
    "S3PresignedSigner",
    "StorageConfig",
    "create_credential_signer",
    "create_object_store",
]
