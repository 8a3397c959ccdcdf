"""
Domain models for identity-proof custody.

These models have no dependencies on FastAPI, boto3 or Snowflake. They
describe what a registration is and what it produces, not how it is
stored or transmitted.
"""

import base64
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .errors import InvalidContentTypeError


class RegistrationState(Enum):
    """
    Steps a registration passes through.

    Each transition is sequential and never retried automatically.
    """
    RECEIVED = "received"
    NAME_ALLOCATED = "name_allocated"
    TOKEN_ISSUED = "token_issued"
    UPLOADED = "uploaded"
    NO_PROOF_PROVIDED = "no_proof_provided"
    COMMITTED = "committed"


@dataclass(frozen=True)
class IdentityProofRef:
    """
    Reference to an uploaded identity-proof image.

    Frozen because an object name is allocated once and never changes.
    The visitor record holds only the object name; this is the full view.
    """
    owner_id: int
    object_name: str
    content_type: str


@dataclass(frozen=True)
class CheckInToken:
    """
    Scannable lookup key for a visitor record.

    The payload is not a secret and carries no signature. It only has to
    resolve to exactly one visitor.
    """
    visitor_id: int
    issued_at: datetime
    payload: str
    rendered_image: bytes

    @property
    def data_url(self) -> str:
        """PNG rendering as a data URL, ready for an <img> tag."""
        encoded = base64.b64encode(self.rendered_image).decode("ascii")
        return f"data:image/png;base64,{encoded}"


@dataclass(frozen=True)
class SignedRetrievalCredential:
    """
    A time-bounded URL granting read access to one stored object.

    Generated per request and never persisted. Verification happens in
    the object store when the URL is presented.
    """
    object_name: str
    expires_at: datetime
    signature: str
    url: str

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now > self.expires_at


@dataclass
class VisitorRegistration:
    """
    Validated input for one registration request.

    The proof fields are all-or-nothing: either bytes plus a content type
    are present, or the visitor registers without an identity proof.
    """
    name: str
    contact: str
    address: Optional[str] = None
    purpose: Optional[str] = None
    patient_id: Optional[int] = None
    proof_data: Optional[bytes] = None
    proof_filename: str = ""
    proof_content_type: str = ""
    check_in_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_proof(self) -> bool:
        return self.proof_data is not None

    def visitor_fields(self) -> dict:
        """Columns written when the visitor row is created."""
        return {
            "name": self.name,
            "contact_number": self.contact,
            "address": self.address,
            "purpose": self.purpose,
            "patient_id": self.patient_id,
            "check_in_time": self.check_in_time,
        }


@dataclass
class RegistrationResult:
    """Everything a successful registration produced."""
    visitor_id: int
    registration: VisitorRegistration
    check_in_token: CheckInToken
    proof: Optional[IdentityProofRef] = None
    state: RegistrationState = RegistrationState.COMMITTED

    @property
    def has_proof(self) -> bool:
        return self.proof is not None


_CONTENT_TYPE = re.compile(r"^[a-z0-9][a-z0-9!#$&^_.+-]*/[a-z0-9][a-z0-9!#$&^_.+-]*$")


def normalize_content_type(content_type: Optional[str]) -> str:
    """
    Validate a declared MIME type and return it lowercased without parameters.

    Raises InvalidContentTypeError for empty or malformed values.
    """
    value = (content_type or "").split(";", 1)[0].strip().lower()
    if not value or not _CONTENT_TYPE.match(value):
        raise InvalidContentTypeError(f"Invalid content type: {content_type!r}")
    return value
