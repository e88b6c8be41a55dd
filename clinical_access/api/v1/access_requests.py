"""Access request (patient consent) endpoints."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse

from clinical_access.api.deps import (
    AccessRequestServiceDep,
    Caller,
    CurrentPatient,
    CurrentProfessional,
    CurrentRequester,
    EvaluationServiceDep,
)
from clinical_access.api.v1.policies import DECISION_STATUS, build_context, resolve_professional_id
from clinical_access.policies.models import AccessContext, Decision
from clinical_access.schemas.access_request import (
    AccessAttemptResponse,
    AccessRequestCreate,
    AccessRequestCreationResponse,
    AccessRequestListResponse,
    AccessRequestRead,
    ApprovalDecision,
    DecisionResponse,
    DenialDecision,
    InfoRequest,
    PendingCountResponse,
)
from clinical_access.schemas.common import page_size, total_pages
from clinical_access.schemas.policy import EvaluationRequest

router = APIRouter(prefix="/access-requests", tags=["access-requests"])


def _requester_context(body: AccessRequestCreate, caller: Caller) -> AccessContext:
    return AccessContext(
        professional_id=resolve_professional_id(body.professional_id, caller),
        patient_id=body.patient_ci,
        document_type=body.document_type,
        specialties=frozenset(body.specialties),
        clinic_id=body.clinic_id,
        document_id=body.document_id,
        request_reason=body.request_reason,
    )


@router.post("", response_model=AccessRequestCreationResponse)
async def create_access_request(
    body: AccessRequestCreate,
    caller: CurrentRequester,
    service: AccessRequestServiceDep,
) -> JSONResponse:
    """Ask the patient for access.

    A clinic asks on behalf of the professional named in ``professionalId``.
    Returns 201 for a new request, or 200 with the request that is already
    pending for the same professional, patient and document.
    """
    request, is_new = await service.create_or_reuse(
        _requester_context(body, caller),
        professional_name=body.professional_name,
        clinic_name=body.clinic_name,
        urgency=body.urgency,
    )
    payload = AccessRequestCreationResponse(
        request=AccessRequestRead.from_request(request),
        is_new=is_new,
        message="Access request created" if is_new else "An access request is already pending",
    )
    return JSONResponse(
        status_code=status.HTTP_201_CREATED if is_new else status.HTTP_200_OK,
        content=payload.model_dump(mode="json", by_alias=True),
    )


@router.post("/attempt", response_model=AccessAttemptResponse)
async def attempt_access(
    body: EvaluationRequest,
    caller: CurrentRequester,
    evaluation: EvaluationServiceDep,
    workflow: AccessRequestServiceDep,
) -> JSONResponse:
    """Try to access a document.

    PERMIT returns 200 and DENY 403. PENDING returns 202 together with the
    access request now waiting for the patient.
    """
    context = build_context(body, caller)
    result = await evaluation.evaluate(context)

    payload = AccessAttemptResponse(
        decision=result.decision.value,
        reason=result.reason,
        evaluated_policies=result.evaluated_policy_ids,
        deciding_policy=result.deciding_policy_id,
        requires_audit=result.requires_audit,
    )
    if result.decision == Decision.PENDING:
        request, is_new = await workflow.create_or_reuse(context)
        payload.access_request = AccessRequestRead.from_request(request)
        payload.is_new = is_new

    return JSONResponse(
        status_code=DECISION_STATUS[result.decision],
        content=payload.model_dump(mode="json", by_alias=True),
    )


@router.get("", response_model=AccessRequestListResponse)
async def list_access_requests(
    patient: CurrentPatient,
    service: AccessRequestServiceDep,
    patient_ci: Optional[str] = Query(None, alias="patientCi"),
    request_status: Optional[str] = Query(None, alias="status"),
    page: int = Query(0, ge=0),
    size: Optional[int] = Query(None, ge=1),
) -> AccessRequestListResponse:
    """List the patient's access requests, newest first."""
    if patient_ci and patient_ci != patient.subject:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Patients can only list their own access requests",
        )
    requests, total = await service.list_for_patient(patient.subject, request_status, page, size)
    size = page_size(size)
    return AccessRequestListResponse(
        requests=[AccessRequestRead.from_request(r) for r in requests],
        total=total,
        page=page,
        size=size,
        total_pages=total_pages(total, size),
    )


@router.get("/pending-count", response_model=PendingCountResponse)
async def get_pending_count(
    patient: CurrentPatient,
    service: AccessRequestServiceDep,
) -> PendingCountResponse:
    return PendingCountResponse(count=await service.pending_count(patient.subject))


@router.get("/{request_id}", response_model=AccessRequestRead)
async def get_access_request(
    request_id: str,
    patient: CurrentPatient,
    service: AccessRequestServiceDep,
) -> AccessRequestRead:
    request = await service.get_request(request_id, patient.subject)
    return AccessRequestRead.from_request(request)


@router.post("/{request_id}/approve", response_model=DecisionResponse)
async def approve_access_request(
    request_id: str,
    patient: CurrentPatient,
    service: AccessRequestServiceDep,
    body: Optional[ApprovalDecision] = None,
) -> DecisionResponse:
    message = await service.approve(request_id, patient.subject, body.reason if body else None)
    return DecisionResponse(request_id=request_id, message=message)


@router.post("/{request_id}/deny", response_model=DecisionResponse)
async def deny_access_request(
    request_id: str,
    body: DenialDecision,
    patient: CurrentPatient,
    service: AccessRequestServiceDep,
) -> DecisionResponse:
    message = await service.deny(request_id, patient.subject, body.reason)
    return DecisionResponse(request_id=request_id, message=message)


@router.post("/{request_id}/request-info", response_model=DecisionResponse)
async def request_more_info(
    request_id: str,
    body: InfoRequest,
    patient: CurrentPatient,
    service: AccessRequestServiceDep,
) -> DecisionResponse:
    """Send the professional a question; the request stays PENDING."""
    message = await service.request_more_info(request_id, patient.subject, body.question)
    return DecisionResponse(request_id=request_id, message=message)


@router.get("/{request_id}/approved-document")
async def get_approved_document(
    request_id: str,
    professional: CurrentProfessional,
    service: AccessRequestServiceDep,
) -> Response:
    """Download the document of an APPROVED request.

    Only the requesting professional may retrieve it. The content hash is
    returned in ``X-Document-Sha256``.
    """
    document = await service.get_approved_document(request_id, professional.subject)
    return Response(
        content=document.content,
        media_type=document.content_type,
        headers={"X-Document-Sha256": document.sha256},
    )
