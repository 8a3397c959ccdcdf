"""
Error taxonomy for identity-proof custody.

The split that matters to callers is "not found" (4xx, retrying is
pointless) versus "unavailable" (5xx, the whole request can be retried).
Infrastructure adapters translate client-library exceptions into these
so the orchestrator and the API never see boto or Snowflake errors.
"""


class CustodyError(Exception):
    """Base class for all custody subsystem errors."""
    pass


class VisitorValidationError(CustodyError):
    """Raised when required registration input is missing or malformed."""
    pass


class InvalidContentTypeError(VisitorValidationError):
    """Raised when an upload declares an empty or malformed content type."""
    pass


class NotFoundError(CustodyError):
    """Raised when a referenced visitor or stored object is absent."""
    pass


class VisitorNotFoundError(NotFoundError):
    """Raised when no visitor record exists for the given ID."""

    def __init__(self, visitor_id: int) -> None:
        super().__init__(f"Visitor {visitor_id} not found")
        self.visitor_id = visitor_id


class IdentityProofNotFoundError(NotFoundError):
    """Raised when a visitor has no identity proof, or it vanished from storage."""

    def __init__(self, visitor_id: int, reason: str = "no identity proof on record") -> None:
        super().__init__(f"Identity proof for visitor {visitor_id} not found: {reason}")
        self.visitor_id = visitor_id


class ObjectNotFoundError(NotFoundError):
    """Raised by the object store when a named object does not exist."""
    pass


class StorageUnavailableError(CustodyError):
    """Raised on object store transport or authentication failures."""
    pass


class SigningUnavailableError(CustodyError):
    """Raised when signing key material is missing or malformed."""
    pass


class RetrievalUnavailableError(CustodyError):
    """Raised when a retrieval credential cannot be produced due to an outage."""
    pass


class TokenRenderingError(CustodyError):
    """Raised when the check-in token could not be rendered."""
    pass


class PartialRegistrationError(CustodyError):
    """
    Raised when the visitor and the identity proof were stored but the
    check-in token could not be persisted.

    Carries enough detail for the caller to tell the visitor record exists.
    """

    def __init__(self, visitor_id: int, object_name: str, cause: Exception) -> None:
        super().__init__(
            f"Visitor {visitor_id} registered with identity proof, "
            f"but check-in token could not be saved: {cause}"
        )
        self.visitor_id = visitor_id
        self.object_name = object_name
        self.cause = cause
