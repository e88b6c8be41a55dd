"""Audit trail endpoints.

Read-only: audit events are written by the services, never through the API.
"""

from typing import Optional

from fastapi import APIRouter, Query, status

from clinical_access.api.deps import CurrentPatient, DbSession
from clinical_access.schemas.audit_event import AccessHistoryResponse, AuditEventRead
from clinical_access.schemas.common import page_size, total_pages
from clinical_access.services.audit import AuditService

router = APIRouter()


@router.get(
    "/access-history",
    response_model=AccessHistoryResponse,
    status_code=status.HTTP_200_OK,
    summary="Patient access history",
    description="Who evaluated, requested or retrieved the patient's records, newest first",
)
async def get_access_history(
    patient: CurrentPatient,
    session: DbSession,
    action_category: Optional[str] = Query(None, alias="actionCategory"),
    page: int = Query(0, ge=0),
    size: Optional[int] = Query(None, ge=1),
) -> AccessHistoryResponse:
    """List audit events touching the authenticated patient's data.

    Args:
        patient: Current authenticated patient
        session: Database session
        action_category: Filter by category (policy, access, access_request)
        page: Zero-based page number
        size: Page size, capped at the configured maximum

    Returns:
        One page of audit events
    """
    size = page_size(size)
    events, total = await AuditService(session).get_patient_history(
        patient.subject, action_category, offset=page * size, limit=size
    )
    return AccessHistoryResponse(
        events=[AuditEventRead.model_validate(e) for e in events],
        total=total,
        page=page,
        size=size,
        total_pages=total_pages(total, size),
    )
