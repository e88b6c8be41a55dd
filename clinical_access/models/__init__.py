"""Database models for the clinical access service."""

from clinical_access.models.access_policy import AccessPolicy
from clinical_access.models.access_request import (
    AccessRequest,
    AccessRequestStatus,
    UrgencyLevel,
    pending_key,
)
from clinical_access.models.audit_event import ActorType, AuditEvent

__all__ = [
    "AccessPolicy",
    "AccessRequest",
    "AccessRequestStatus",
    "ActorType",
    "AuditEvent",
    "UrgencyLevel",
    "pending_key",
]
