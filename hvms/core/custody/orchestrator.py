"""
Custody orchestration for visitor registration and identity-proof retrieval.

Registration runs these steps in order:

    Received -> NameAllocated -> TokenIssued -> (Uploaded | NoProofProvided) -> Committed

The token is rendered before anything is uploaded, so a rendering failure
never leaves an orphaned object behind. Nothing is retried here; a failed
registration removes the visitor row it created, so the caller can retry
the whole request without producing duplicates.

Retrieval resolves the object name from the visitor record, checks the
object still exists in storage, and only then signs a short-lived URL.
"""

import logging
from typing import Iterator, Optional, Protocol

from .errors import (
    IdentityProofNotFoundError,
    InvalidContentTypeError,
    ObjectNotFoundError,
    PartialRegistrationError,
    RetrievalUnavailableError,
    SigningUnavailableError,
    StorageUnavailableError,
    TokenRenderingError,
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
from .naming import NameAllocator
from .tokens import CheckInTokenIssuer

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Collaborator Protocols
# ---------------------------------------------------------------------------

class VisitorStore(Protocol):
    """
    The relational store, as far as custody is concerned.

    Each call is its own transaction; the orchestrator sequences them.
    """

    def create_visitor(self, fields: dict) -> int: ...

    def set_identity_proof_ref(
        self, visitor_id: int, object_name: str, content_type: str
    ) -> None: ...

    def set_check_in_token(self, visitor_id: int, token: CheckInToken) -> None: ...

    def get_identity_proof_ref(self, visitor_id: int) -> Optional[IdentityProofRef]: ...

    def delete_visitor(self, visitor_id: int) -> None: ...


class ObjectStore(Protocol):
    """
    Durable binary storage keyed by object name.

    Implemented by R2ObjectStore and MockObjectStore in
    infrastructure.storage.client.
    """

    async def ensure_namespace(self) -> None:
        """Create the bucket if it does not exist. Idempotent."""
        ...

    async def put(self, object_name: str, data: bytes, content_type: str) -> str:
        """Upload bytes and return an internal locator."""
        ...

    async def exists(self, object_name: str) -> bool:
        """True if the object is stored, False if it genuinely is not."""
        ...

    async def get_content_type(self, object_name: str) -> str:
        """Content type recorded at upload time."""
        ...

    async def open_read_stream(self, object_name: str) -> Iterator[bytes]:
        """Iterator over the object's bytes, in chunks."""
        ...

    async def delete(self, object_name: str) -> None:
        """Remove an object. Used only to compensate a failed registration."""
        ...


class CredentialSigner(Protocol):
    """Issues signed, time-limited read URLs for stored objects."""

    async def sign(
        self, object_name: str, lifetime: Optional[int] = None
    ) -> SignedRetrievalCredential: ...


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class CustodyOrchestrator:
    """
    Coordinates naming, storage, signing and token issuing.

    Stateless apart from its collaborators, so one instance per request
    (or one shared instance) is equally fine.
    """

    def __init__(
        self,
        visitors: VisitorStore,
        object_store: ObjectStore,
        signer: CredentialSigner,
        token_issuer: CheckInTokenIssuer,
        name_allocator: Optional[NameAllocator] = None,
    ) -> None:
        self._visitors = visitors
        self._object_store = object_store
        self._signer = signer
        self._token_issuer = token_issuer
        self._name_allocator = name_allocator or NameAllocator()

    # -----------------------------------------------------------------------
    # Registration
    # -----------------------------------------------------------------------

    async def register(self, registration: VisitorRegistration) -> RegistrationResult:
        """
        Register a visitor, store the identity proof and issue the check-in token.

        Raises:
            VisitorValidationError: name/contact missing or proof type invalid
            TokenRenderingError: check-in token could not be rendered
            StorageUnavailableError: the proof upload failed
            PartialRegistrationError: proof stored but token not persisted
        """
        self._validate(registration)

        state = RegistrationState.RECEIVED
        visitor_id = self._visitors.create_visitor(registration.visitor_fields())

        logger.info(
            "Visitor record created",
            extra={"visitor_id": visitor_id, "has_proof": registration.has_proof}
        )

        object_name = None
        if registration.has_proof:
            object_name = self._name_allocator.allocate(
                visitor_id, registration.proof_filename
            )
            state = RegistrationState.NAME_ALLOCATED

        try:
            token = self._token_issuer.issue(visitor_id)
        except TokenRenderingError:
            self._discard_visitor(visitor_id)
            raise
        state = RegistrationState.TOKEN_ISSUED

        proof = None
        if object_name is not None:
            proof = await self._store_proof(visitor_id, object_name, registration)
            state = RegistrationState.UPLOADED
        else:
            state = RegistrationState.NO_PROOF_PROVIDED

        try:
            self._visitors.set_check_in_token(visitor_id, token)
        except Exception as e:
            logger.error(
                "Failed to persist check-in token",
                extra={"visitor_id": visitor_id, "state": state.value, "error": str(e)}
            )
            if proof is not None:
                raise PartialRegistrationError(visitor_id, proof.object_name, e)
            self._discard_visitor(visitor_id)
            raise

        logger.info(
            "Visitor registration committed",
            extra={"visitor_id": visitor_id, "has_proof": proof is not None}
        )

        return RegistrationResult(
            visitor_id=visitor_id,
            registration=registration,
            check_in_token=token,
            proof=proof,
            state=RegistrationState.COMMITTED,
        )

    def _validate(self, registration: VisitorRegistration) -> None:
        missing = [
            label for label, value in (
                ("name", registration.name),
                ("contact", registration.contact),
            )
            if not value or not value.strip()
        ]
        if missing:
            raise VisitorValidationError(f"Missing required fields: {', '.join(missing)}")

        if registration.has_proof:
            if not registration.proof_data:
                raise VisitorValidationError("Identity proof file is empty")
            registration.proof_content_type = normalize_content_type(
                registration.proof_content_type
            )

    async def _store_proof(
        self,
        visitor_id: int,
        object_name: str,
        registration: VisitorRegistration,
    ) -> IdentityProofRef:
        """Upload the proof, then record its name on the visitor row."""
        try:
            await self._object_store.put(
                object_name,
                registration.proof_data,
                registration.proof_content_type,
            )
        except (StorageUnavailableError, InvalidContentTypeError):
            # the row must not outlive a failed upload
            self._discard_visitor(visitor_id)
            raise

        try:
            self._visitors.set_identity_proof_ref(
                visitor_id, object_name, registration.proof_content_type
            )
        except Exception as e:
            logger.error(
                "Failed to record identity proof reference",
                extra={"visitor_id": visitor_id, "error": str(e)}
            )
            await self._discard_object(object_name)
            self._discard_visitor(visitor_id)
            raise

        return IdentityProofRef(
            owner_id=visitor_id,
            object_name=object_name,
            content_type=registration.proof_content_type,
        )

    def _discard_visitor(self, visitor_id: int) -> None:
        """Compensating delete of a visitor row created by a failed registration."""
        try:
            self._visitors.delete_visitor(visitor_id)
            logger.info("Removed incomplete visitor record", extra={"visitor_id": visitor_id})
        except Exception as e:
            # the original failure is re-raised by the caller
            logger.error(
                "Failed to remove incomplete visitor record",
                extra={"visitor_id": visitor_id, "error": str(e)}
            )

    async def _discard_object(self, object_name: str) -> None:
        try:
            await self._object_store.delete(object_name)
        except Exception as e:
            logger.error(
                "Failed to remove orphaned identity proof",
                extra={"object_name": object_name, "error": str(e)}
            )

    # -----------------------------------------------------------------------
    # Retrieval
    # -----------------------------------------------------------------------

    def resolve(self, visitor_id: int) -> IdentityProofRef:
        """
        Look up the identity proof reference for a visitor.

        Raises VisitorNotFoundError or IdentityProofNotFoundError.
        """
        ref = self._visitors.get_identity_proof_ref(visitor_id)
        if ref is None:
            raise IdentityProofNotFoundError(visitor_id)
        return ref

    async def issue_retrieval_credential(self, visitor_id: int) -> SignedRetrievalCredential:
        """
        Produce a signed, short-lived URL for a visitor's identity proof.

        The persisted reference is not trusted on its own: the object must
        still exist in storage before a credential is signed for it.
        """
        ref = self.resolve(visitor_id)

        try:
            present = await self._object_store.exists(ref.object_name)
        except StorageUnavailableError as e:
            raise RetrievalUnavailableError(f"Could not check identity proof: {e}")

        if not present:
            logger.warning(
                "Identity proof missing from storage",
                extra={"visitor_id": visitor_id}
            )
            raise IdentityProofNotFoundError(visitor_id, "object missing from storage")

        try:
            credential = await self._signer.sign(ref.object_name)
        except (SigningUnavailableError, StorageUnavailableError) as e:
            raise RetrievalUnavailableError(f"Could not sign retrieval URL: {e}")

        logger.info(
            "Issued identity proof retrieval credential",
            extra={
                "visitor_id": visitor_id,
                "expires_at": credential.expires_at.isoformat(),
            }
        )

        return credential

    async def open_proof(self, visitor_id: int) -> tuple[IdentityProofRef, str, Iterator[bytes]]:
        """
        Open the identity proof for streaming through the service.

        Fallback for clients that cannot follow a redirect to storage.
        Returns the reference, the stored content type and a chunk iterator.
        """
        ref = self.resolve(visitor_id)

        try:
            content_type = await self._object_store.get_content_type(ref.object_name)
            stream = await self._object_store.open_read_stream(ref.object_name)
        except ObjectNotFoundError:
            raise IdentityProofNotFoundError(visitor_id, "object missing from storage")
        except StorageUnavailableError as e:
            raise RetrievalUnavailableError(f"Could not open identity proof: {e}")

        return ref, content_type, stream
