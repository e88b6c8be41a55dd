"""Pydantic schemas for the access request workflow."""

from datetime import datetime
from typing import Optional

from pydantic import Field

from clinical_access.models.access_request import AccessRequest
from clinical_access.policies.models import DocumentType
from clinical_access.schemas.common import CamelModel


class AccessRequestCreate(CamelModel):
    """Schema for a professional asking a patient for access."""

    patient_ci: str = Field(..., min_length=1)
    professional_id: Optional[str] = Field(None, description="Required for clinic callers")
    document_id: Optional[str] = Field(None, max_length=128)
    document_type: DocumentType
    specialties: list[str] = Field(default_factory=list)
    clinic_id: Optional[str] = None
    clinic_name: Optional[str] = Field(None, max_length=255)
    professional_name: Optional[str] = Field(None, max_length=255)
    request_reason: Optional[str] = Field(None, max_length=2000)
    urgency: Optional[str] = Field(None, description="ROUTINE, URGENT or EMERGENCY")


class AccessRequestRead(CamelModel):
    """Schema for reading an access request."""

    id: str
    professional_id: str
    professional_name: Optional[str]
    specialties: list[str]
    clinic_id: Optional[str]
    clinic_name: Optional[str]
    patient_ci: str
    document_id: Optional[str]
    document_type: Optional[str]
    request_reason: Optional[str]
    urgency: str
    status: str
    requested_at: datetime
    expires_at: datetime
    patient_response: Optional[str]
    responded_at: Optional[datetime]

    @classmethod
    def from_request(cls, request: AccessRequest) -> "AccessRequestRead":
        return cls(
            id=request.id,
            professional_id=request.professional_id,
            professional_name=request.professional_name,
            specialties=list(request.professional_specialties or []),
            clinic_id=request.clinic_id,
            clinic_name=request.clinic_name,
            patient_ci=request.patient_id,
            document_id=request.document_id,
            document_type=request.document_type,
            request_reason=request.request_reason,
            urgency=request.urgency,
            status=request.status,
            requested_at=request.requested_at,
            expires_at=request.expires_at,
            patient_response=request.patient_response,
            responded_at=request.responded_at,
        )


class AccessRequestCreationResponse(CamelModel):
    request: AccessRequestRead
    is_new: bool
    message: str


class AccessRequestListResponse(CamelModel):
    requests: list[AccessRequestRead]
    total: int
    page: int
    size: int
    total_pages: int


class ApprovalDecision(CamelModel):
    reason: Optional[str] = Field(None, max_length=2000)


class DenialDecision(CamelModel):
    """Minimum length is a runtime setting and is checked by the service."""

    reason: str = Field(..., max_length=2000)


class InfoRequest(CamelModel):
    question: str = Field(..., max_length=2000)


class DecisionResponse(CamelModel):
    request_id: str
    message: str


class PendingCountResponse(CamelModel):
    count: int


class AccessAttemptResponse(CamelModel):
    """Outcome of a document access attempt.

    ``accessRequest`` is present only for PENDING decisions.
    """

    decision: str
    reason: str
    evaluated_policies: list[str]
    deciding_policy: Optional[str]
    requires_audit: bool = False
    access_request: Optional[AccessRequestRead] = None
    is_new: Optional[bool] = None
