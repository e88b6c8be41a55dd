"""Business logic services."""

from clinical_access.services.access_evaluation import AccessEvaluationService
from clinical_access.services.access_requests import AccessRequestService
from clinical_access.services.audit import AuditService, write_audit_event
from clinical_access.services.policy_cache import PolicyCache, policy_cache
from clinical_access.services.policy_management import PolicyManagementService

__all__ = [
    "AccessEvaluationService",
    "AccessRequestService",
    "AuditService",
    "write_audit_event",
    "PolicyCache",
    "policy_cache",
    "PolicyManagementService",
]
