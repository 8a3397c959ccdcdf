"""
Identity-proof custody: naming, check-in tokens and orchestration.
"""

from .errors import (
    CustodyError,
    IdentityProofNotFoundError,
    InvalidContentTypeError,
    NotFoundError,
    ObjectNotFoundError,
    PartialRegistrationError,
    RetrievalUnavailableError,
    SigningUnavailableError,
    StorageUnavailableError,
    TokenRenderingError,
    VisitorNotFoundError,
    VisitorValidationError,
)
from .models import (
    CheckInToken,
    IdentityProofRef,
    RegistrationResult,
    RegistrationState,
    SignedRetrievalCredential,
    VisitorRegistration,
    normalize_content_type,
)
from .naming import NameAllocator, sanitize_filename
from .orchestrator import CredentialSigner, CustodyOrchestrator, ObjectStore, VisitorStore
from .tokens import CheckInTokenIssuer, TokenRenderer, build_payload, parse_payload

__all__ = [
    # Errors
    "CustodyError",
    "IdentityProofNotFoundError",
    "InvalidContentTypeError",
    "NotFoundError",
    "ObjectNotFoundError",
    "PartialRegistrationError",
    "RetrievalUnavailableError",
    "SigningUnavailableError",
    "StorageUnavailableError",
    "TokenRenderingError",
    "VisitorNotFoundError",
    "VisitorValidationError",
    # Models
    "CheckInToken",
    "IdentityProofRef",
    "RegistrationResult",
    "RegistrationState",
    "SignedRetrievalCredential",
    "VisitorRegistration",
    "normalize_content_type",
    # Services
    "CheckInTokenIssuer",
    "CredentialSigner",
    "CustodyOrchestrator",
    "NameAllocator",
    "ObjectStore",
    "TokenRenderer",
    "VisitorStore",
    "build_payload",
    "parse_payload",
    "sanitize_filename",
]
