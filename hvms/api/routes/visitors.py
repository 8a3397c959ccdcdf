"""
Visitor registration and identity-proof retrieval endpoints.

Registration accepts a multipart form from the front desk: the visitor's
details plus an optional photo of their ID. Retrieval never exposes the
object store: staff are redirected to a signed URL that expires after a
few minutes.

Response field names (VisitorID, IDProofUrl, QRCode, ...) match what the
front-desk UI already consumes.
"""

import logging
from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status
from fastapi.responses import RedirectResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ...core.custody.errors import (
    CustodyError,
    InvalidContentTypeError,
    NotFoundError,
    PartialRegistrationError,
    RetrievalUnavailableError,
    VisitorValidationError,
)
from ...core.custody.models import (
    RegistrationResult,
    VisitorRegistration,
    normalize_content_type,
)
from ..dependencies import (
    AuthenticatedUser,
    CustodyOrchestratorDep,
    SettingsDep,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Response Models
# ---------------------------------------------------------------------------

class VisitorResponse(BaseModel):
    """A registered visitor as returned to the front desk."""
    model_config = ConfigDict(populate_by_name=True)

    visitor_id: int = Field(alias="VisitorID", description="Visitor identifier")
    name: str = Field(alias="Name")
    contact_number: str = Field(alias="ContactNumber")
    address: Optional[str] = Field(None, alias="Address")
    purpose: Optional[str] = Field(None, alias="Purpose")
    patient_id: Optional[int] = Field(None, alias="PatientID")
    check_in_time: datetime = Field(alias="CheckInTime")
    check_out_time: Optional[datetime] = Field(None, alias="CheckOutTime")
    id_proof_url: Optional[str] = Field(
        None,
        alias="IDProofUrl",
        description="Download path for the identity proof, or null if none was uploaded",
    )
    qr_code: str = Field(alias="QRCode", description="Check-in QR code as a PNG data URL")
    qr_payload: str = Field(alias="QRPayload", description="String encoded in the QR code")


class RegisterResponse(BaseModel):
    """Response after registering a visitor."""
    success: bool = True
    visitor: VisitorResponse


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def download_path(visitor_id: int) -> str:
    """Service-relative path that redirects to a fresh signed URL."""
    return f"/api/visitors/{visitor_id}/download-id"


def to_response(result: RegistrationResult) -> VisitorResponse:
    registration = result.registration
    return VisitorResponse(
        visitor_id=result.visitor_id,
        name=registration.name,
        contact_number=registration.contact,
        address=registration.address,
        purpose=registration.purpose,
        patient_id=registration.patient_id,
        check_in_time=registration.check_in_time,
        check_out_time=None,
        id_proof_url=download_path(result.visitor_id) if result.has_proof else None,
        qr_code=result.check_in_token.data_url,
        qr_payload=result.check_in_token.payload,
    )


def _parse_patient_id(patient: Optional[str]) -> Optional[int]:
    if patient is None or not patient.strip():
        return None
    try:
        patient_id = int(patient)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": f"Invalid patient id: {patient}"},
        )
    if patient_id <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": f"Invalid patient id: {patient}"},
        )
    return patient_id


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a visitor",
    description="Check a visitor in, store their identity proof and issue a check-in QR code",
)
async def register_visitor(
    name: Annotated[Optional[str], Form()] = None,
    contact: Annotated[Optional[str], Form()] = None,
    address: Annotated[Optional[str], Form()] = None,
    purpose: Annotated[Optional[str], Form()] = None,
    patient: Annotated[Optional[str], Form()] = None,
    id_proof: Annotated[Optional[UploadFile], File(alias="idProof")] = None,
    api_key: AuthenticatedUser = None,
    orchestrator: CustodyOrchestratorDep = None,
    settings: SettingsDep = None,
) -> RegisterResponse:
    """
    Register a visitor.

    name and contact are required. The identity proof is optional; when
    present it must be one of the allowed image/document types and below
    the configured size limit.
    """
    registration = VisitorRegistration(
        name=(name or "").strip(),
        contact=(contact or "").strip(),
        address=address or None,
        purpose=purpose or None,
        patient_id=_parse_patient_id(patient),
    )

    # browsers submit an empty part when no file was chosen
    if id_proof is not None and id_proof.filename:
        try:
            content_type = normalize_content_type(id_proof.content_type)
        except InvalidContentTypeError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": str(e)},
            )

        if content_type not in settings.allowed_id_proof_types_list:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"error": f"Unsupported identity proof type: {id_proof.content_type}"},
            )

        data = await id_proof.read()

        max_size_bytes = settings.max_id_proof_size_mb * 1024 * 1024
        if len(data) > max_size_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail={"error": f"Identity proof too large. Maximum size: {settings.max_id_proof_size_mb}MB"},
            )

        registration.proof_data = data
        registration.proof_filename = id_proof.filename
        registration.proof_content_type = content_type

    logger.info(
        "Visitor registration started",
        extra={
            "has_proof": registration.has_proof,
            "patient_id": registration.patient_id,
        }
    )

    try:
        result = await orchestrator.register(registration)

    except VisitorValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": str(e)},
        )

    except PartialRegistrationError as e:
        logger.error(
            "Visitor registered without check-in token",
            extra={"visitor_id": e.visitor_id, "error": str(e.cause)}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Visitor was registered but the check-in token could not be saved",
                "visitor_id": e.visitor_id,
                "partial": True,
            },
        )

    except CustodyError as e:
        logger.error(
            "Visitor registration failed",
            extra={"error_type": type(e).__name__, "error": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": str(e)},
        )

    return RegisterResponse(success=True, visitor=to_response(result))


@router.get(
    "/{visitor_id}/download-id",
    status_code=status.HTTP_302_FOUND,
    summary="Download identity proof",
    description="Redirect to a short-lived signed URL for the visitor's identity proof",
    response_class=RedirectResponse,
    responses={404: {"description": "Visitor or identity proof not found"}},
)
async def download_identity_proof(
    visitor_id: int,
    api_key: AuthenticatedUser = None,
    orchestrator: CustodyOrchestratorDep = None,
) -> RedirectResponse:
    """
    Redirect to the identity proof.

    The object's existence in storage is checked first, so a proof that was
    deleted out-of-band yields 404 rather than a link to nothing.
    """
    try:
        credential = await orchestrator.issue_retrieval_credential(visitor_id)

    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": str(e)},
        )

    except RetrievalUnavailableError as e:
        logger.error(
            "Identity proof retrieval unavailable",
            extra={"visitor_id": visitor_id, "error": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Identity proof storage is unavailable"},
        )

    return RedirectResponse(
        url=credential.url,
        status_code=status.HTTP_302_FOUND,
        headers={"Cache-Control": "no-store"},
    )


@router.get(
    "/{visitor_id}/id-proof",
    summary="Stream identity proof",
    description="Fallback download through the service for clients that cannot follow storage redirects",
    response_class=StreamingResponse,
    responses={404: {"description": "Visitor or identity proof not found"}},
)
async def stream_identity_proof(
    visitor_id: int,
    api_key: AuthenticatedUser = None,
    orchestrator: CustodyOrchestratorDep = None,
) -> StreamingResponse:
    try:
        ref, content_type, stream = await orchestrator.open_proof(visitor_id)

    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": str(e)},
        )

    except RetrievalUnavailableError as e:
        logger.error(
            "Identity proof download unavailable",
            extra={"visitor_id": visitor_id, "error": str(e)}
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "Identity proof storage is unavailable"},
        )

    filename = ref.object_name.rsplit("/", 1)[-1]

    return StreamingResponse(
        stream,
        media_type=content_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-store",
        },
    )
