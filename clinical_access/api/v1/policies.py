"""Patient access policy endpoints and access evaluation."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Response, status
from fastapi.responses import JSONResponse

from clinical_access.api.deps import (
    Caller,
    CurrentPatient,
    CurrentRequester,
    EvaluationServiceDep,
    PolicyServiceDep,
)
from clinical_access.db.base import utc_now
from clinical_access.policies.loader import template_catalogue
from clinical_access.policies.models import AccessContext, Decision, MedicalSpecialty
from clinical_access.schemas.common import page_size, total_pages
from clinical_access.schemas.policy import (
    BulkDeleteResponse,
    EvaluationRequest,
    EvaluationResponse,
    PolicyCountResponse,
    PolicyCreate,
    PolicyListResponse,
    PolicyRead,
    PolicyTemplateCatalogue,
    PolicyTemplateRead,
    PolicyUpdate,
    SpecialtyRead,
)

router = APIRouter(prefix="/policies", tags=["policies"])

DECISION_STATUS = {
    Decision.PERMIT: status.HTTP_200_OK,
    Decision.DENY: status.HTTP_403_FORBIDDEN,
    Decision.PENDING: status.HTTP_202_ACCEPTED,
}


def _require_own_ci(patient_ci: Optional[str], caller_ci: str) -> str:
    if patient_ci and patient_ci != caller_ci:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Patients can only manage their own policies",
        )
    return caller_ci


def resolve_professional_id(requested: Optional[str], caller: Caller) -> str:
    """Bind professionals to their own id.

    A clinic caller acts on behalf of the professional named in the body.
    """
    if caller.is_professional:
        if requested and requested != caller.subject:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="professionalId does not match the authenticated professional",
            )
        return caller.subject
    return requested or ""


def build_context(body: EvaluationRequest, caller: Caller) -> AccessContext:
    """Build the access context for an evaluation request."""
    return AccessContext(
        professional_id=resolve_professional_id(body.professional_id, caller),
        patient_id=body.patient_ci,
        document_type=body.document_type,
        specialties=frozenset(body.specialties),
        clinic_id=body.clinic_id,
        document_id=body.document_id,
        request_reason=body.request_reason,
    )


@router.get("/templates", response_model=PolicyTemplateCatalogue)
async def get_policy_templates() -> PolicyTemplateCatalogue:
    """List the policy templates a patient can start from."""
    return PolicyTemplateCatalogue(
        version=template_catalogue.version,
        hash=template_catalogue.catalogue_hash,
        templates=[
            PolicyTemplateRead(
                policy_type=t["policy_type"].value,
                display_name=t["display_name"],
                description=t["description"],
                available_effects=[e.value for e in t["available_effects"]],
                default_priority=t["default_priority"],
                example_configuration=t["example_configuration"],
            )
            for t in template_catalogue.templates
        ],
    )


@router.get("/specialties", response_model=list[SpecialtyRead])
async def get_specialties() -> list[SpecialtyRead]:
    return [SpecialtyRead(value=s.name, label=s.value) for s in MedicalSpecialty]


@router.get("/count", response_model=PolicyCountResponse)
async def count_policies(
    patient: CurrentPatient,
    service: PolicyServiceDep,
) -> PolicyCountResponse:
    count = await service.count_policies(patient.subject)
    return PolicyCountResponse(patient_ci=patient.subject, count=count)


@router.post("/evaluate", response_model=EvaluationResponse)
async def evaluate_access(
    body: EvaluationRequest,
    caller: CurrentRequester,
    service: EvaluationServiceDep,
) -> JSONResponse:
    """Evaluate an access attempt against the patient's policies.

    PERMIT returns 200, DENY 403 and PENDING 202. The body is the same
    evaluation result in all three cases.
    """
    result = await service.evaluate(build_context(body, caller))
    payload = EvaluationResponse.from_result(result)
    return JSONResponse(
        status_code=DECISION_STATUS[result.decision],
        content=payload.model_dump(mode="json", by_alias=True),
    )


@router.get("/patient/{patient_ci}", response_model=PolicyListResponse)
async def list_patient_policies(
    patient_ci: str,
    patient: CurrentPatient,
    service: PolicyServiceDep,
    policy_type: Optional[str] = Query(None, alias="policyType"),
    page: int = Query(0, ge=0),
    size: Optional[int] = Query(None, ge=1),
) -> PolicyListResponse:
    """List a patient's policies, highest priority first.

    An empty page is returned when the patient has no policies.
    """
    patient_id = _require_own_ci(patient_ci, patient.subject)
    policies, total = await service.list_policies(patient_id, policy_type, page, size)
    size = page_size(size)
    now = utc_now()
    return PolicyListResponse(
        policies=[PolicyRead.from_policy(p, now) for p in policies],
        total=total,
        page=page,
        size=size,
        total_pages=total_pages(total, size),
    )


@router.post("", response_model=PolicyRead, status_code=status.HTTP_201_CREATED)
async def create_policy(
    body: PolicyCreate,
    patient: CurrentPatient,
    service: PolicyServiceDep,
) -> PolicyRead:
    """Create a policy for the authenticated patient."""
    patient_id = _require_own_ci(body.patient_ci, patient.subject)
    policy = await service.create_policy(
        patient_id=patient_id,
        policy_type=body.policy_type,
        policy_config=body.policy_config,
        effect=body.policy_effect,
        priority=body.priority,
        document_id=body.document_id,
        valid_from=body.valid_from,
        valid_until=body.valid_until,
    )
    return PolicyRead.from_policy(policy, utc_now())


@router.delete("", response_model=BulkDeleteResponse)
async def delete_all_policies(
    patient: CurrentPatient,
    service: PolicyServiceDep,
) -> BulkDeleteResponse:
    """Delete every policy of the authenticated patient."""
    deleted = await service.delete_all_policies(patient.subject)
    return BulkDeleteResponse(deleted=deleted)


@router.get("/{policy_id}", response_model=PolicyRead)
async def get_policy(
    policy_id: str,
    patient: CurrentPatient,
    service: PolicyServiceDep,
) -> PolicyRead:
    policy = await service.get_policy(policy_id, patient.subject)
    return PolicyRead.from_policy(policy, utc_now())


@router.put("/{policy_id}", response_model=PolicyRead)
async def update_policy(
    policy_id: str,
    body: PolicyUpdate,
    patient: CurrentPatient,
    service: PolicyServiceDep,
) -> PolicyRead:
    """Update a policy. Only the fields sent are changed."""
    policy = await service.update_policy(policy_id, patient.subject, body.changes())
    return PolicyRead.from_policy(policy, utc_now())


@router.put("/{policy_id}/revoke", response_model=PolicyRead)
async def revoke_policy(
    policy_id: str,
    patient: CurrentPatient,
    service: PolicyServiceDep,
) -> PolicyRead:
    """End a policy's validity now without deleting it."""
    policy = await service.revoke_policy(policy_id, patient.subject)
    return PolicyRead.from_policy(policy, utc_now())


@router.delete("/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_policy(
    policy_id: str,
    patient: CurrentPatient,
    service: PolicyServiceDep,
) -> Response:
    await service.delete_policy(policy_id, patient.subject)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
