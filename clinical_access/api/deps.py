"""FastAPI dependency injection utilities."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from clinical_access.core.security import ACTOR_CLINIC, ACTOR_PATIENT, ACTOR_PROFESSIONAL, decode_access_token
from clinical_access.db.session import get_db
from clinical_access.repositories.sql import SqlAccessRequestRepository, SqlPolicyRepository
from clinical_access.services.access_evaluation import AccessEvaluationService
from clinical_access.services.access_requests import AccessRequestService
from clinical_access.services.audit import DatabaseAuditTrail
from clinical_access.services.documents import DocumentSource
from clinical_access.services.documents import get_document_source as _configured_document_source
from clinical_access.services.notifications import LoggingNotifier, Notifier
from clinical_access.services.policy_management import PolicyManagementService

# Security scheme
security = HTTPBearer(auto_error=False)

_notifier = LoggingNotifier()


@dataclass(frozen=True)
class Caller:
    """Authenticated caller taken from the bearer token."""

    subject: str
    actor_type: str

    @property
    def is_patient(self) -> bool:
        return self.actor_type == ACTOR_PATIENT

    @property
    def is_professional(self) -> bool:
        return self.actor_type == ACTOR_PROFESSIONAL

    @property
    def is_clinic(self) -> bool:
        return self.actor_type == ACTOR_CLINIC


async def get_current_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> dict | None:
    """Extract and decode the current JWT token.

    Returns:
        Decoded token payload or None
    """
    if not credentials:
        return None

    return decode_access_token(credentials.credentials)


async def get_current_caller(
    token: Annotated[dict | None, Depends(get_current_token)],
) -> Caller:
    """Get the authenticated caller.

    Raises:
        HTTPException: If the token is missing, invalid or incomplete
    """
    if not token or not token.get("sub") or not token.get("actor_type"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Caller(subject=str(token["sub"]), actor_type=str(token["actor_type"]))


async def get_current_patient(
    caller: Annotated[Caller, Depends(get_current_caller)],
) -> Caller:
    """Get the authenticated patient."""
    if not caller.is_patient:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Patient authentication required",
        )
    return caller


async def get_current_professional(
    caller: Annotated[Caller, Depends(get_current_caller)],
) -> Caller:
    """Get the authenticated health professional."""
    if not caller.is_professional:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Professional authentication required",
        )
    return caller


async def get_current_requester(
    caller: Annotated[Caller, Depends(get_current_caller)],
) -> Caller:
    """Get a professional, or a clinic acting for one of its professionals."""
    if not (caller.is_professional or caller.is_clinic):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Professional or clinic authentication required",
        )
    return caller


def get_request_id(request: Request) -> str | None:
    """Extract request ID from headers."""
    return request.headers.get("X-Request-ID")


def get_notifier() -> Notifier:
    """Get the notifier used by the workflow."""
    return _notifier


def get_document_source() -> DocumentSource:
    """Get the configured document source."""
    return _configured_document_source()


def get_policy_service(
    session: Annotated[AsyncSession, Depends(get_db)],
    request: Request,
) -> PolicyManagementService:
    return PolicyManagementService(
        policies=SqlPolicyRepository(session),
        audit=DatabaseAuditTrail(session, get_request_id(request)),
    )


def get_evaluation_service(
    session: Annotated[AsyncSession, Depends(get_db)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
    request: Request,
) -> AccessEvaluationService:
    return AccessEvaluationService(
        policies=SqlPolicyRepository(session),
        audit=DatabaseAuditTrail(session, get_request_id(request)),
        notifier=notifier,
    )


def get_access_request_service(
    session: Annotated[AsyncSession, Depends(get_db)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
    documents: Annotated[DocumentSource, Depends(get_document_source)],
    request: Request,
) -> AccessRequestService:
    return AccessRequestService(
        requests=SqlAccessRequestRepository(session),
        audit=DatabaseAuditTrail(session, get_request_id(request)),
        notifier=notifier,
        documents=documents,
    )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentCaller = Annotated[Caller, Depends(get_current_caller)]
CurrentPatient = Annotated[Caller, Depends(get_current_patient)]
CurrentProfessional = Annotated[Caller, Depends(get_current_professional)]
CurrentRequester = Annotated[Caller, Depends(get_current_requester)]
PolicyServiceDep = Annotated[PolicyManagementService, Depends(get_policy_service)]
EvaluationServiceDep = Annotated[AccessEvaluationService, Depends(get_evaluation_service)]
AccessRequestServiceDep = Annotated[AccessRequestService, Depends(get_access_request_service)]
