"""Policy and access request stores."""

from clinical_access.repositories.base import (
    AccessRequestRepository,
    DuplicatePendingRequest,
    PolicyRepository,
)
from clinical_access.repositories.memory import (
    InMemoryAccessRequestRepository,
    InMemoryPolicyRepository,
)
from clinical_access.repositories.sql import SqlAccessRequestRepository, SqlPolicyRepository

__all__ = [
    "AccessRequestRepository",
    "DuplicatePendingRequest",
    "InMemoryAccessRequestRepository",
    "InMemoryPolicyRepository",
    "PolicyRepository",
    "SqlAccessRequestRepository",
    "SqlPolicyRepository",
]
