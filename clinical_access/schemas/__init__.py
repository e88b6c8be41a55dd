"""Pydantic schemas for request/response validation."""

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
from clinical_access.schemas.audit_event import AccessHistoryResponse, AuditEventRead
from clinical_access.schemas.common import CamelModel, ErrorResponse
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

__all__ = [
    "AccessAttemptResponse",
    "AccessHistoryResponse",
    "AccessRequestCreate",
    "AccessRequestCreationResponse",
    "AccessRequestListResponse",
    "AccessRequestRead",
    "ApprovalDecision",
    "AuditEventRead",
    "BulkDeleteResponse",
    "CamelModel",
    "DecisionResponse",
    "DenialDecision",
    "ErrorResponse",
    "EvaluationRequest",
    "EvaluationResponse",
    "InfoRequest",
    "PendingCountResponse",
    "PolicyCountResponse",
    "PolicyCreate",
    "PolicyListResponse",
    "PolicyRead",
    "PolicyTemplateCatalogue",
    "PolicyTemplateRead",
    "PolicyUpdate",
    "SpecialtyRead",
]
