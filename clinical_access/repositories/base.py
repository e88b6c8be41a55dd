"""Store interfaces for policies and access requests.

Services receive these explicitly, so the same workflow runs against the
database in production and against in-memory stores in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from clinical_access.models.access_request import AccessRequest, AccessRequestStatus
from clinical_access.policies.models import Policy, PolicyType


class DuplicatePendingRequest(Exception):
    """A PENDING request already exists for the same triple."""

    pass


class PolicyRepository(ABC):
    """Durable store of patient policies."""

    @abstractmethod
    async def find_by_patient(self, patient_id: str) -> list[Policy]:
        """All policies of a patient, oldest first."""
        pass

    @abstractmethod
    async def list_for_patient(
        self,
        patient_id: str,
        policy_type: PolicyType | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Policy], int]:
        """One page of a patient's policies plus the unpaged total."""
        pass

    @abstractmethod
    async def get(self, policy_id: str) -> Policy | None:
        pass

    @abstractmethod
    async def add(self, policy: Policy) -> Policy:
        pass

    @abstractmethod
    async def update(self, policy: Policy) -> Policy:
        """Replace a stored policy.

        Raises:
            NotFoundError: If the policy was deleted in the meantime
        """

    @abstractmethod
    async def delete(self, policy_id: str) -> bool:
        """Delete one policy.

        Returns:
            True if deleted, False if not found
        """
        pass

    @abstractmethod
    async def delete_for_patient(self, patient_id: str) -> int:
        """Delete every policy of a patient and return how many went."""
        pass

    @abstractmethod
    async def count_for_patient(self, patient_id: str) -> int:
        pass


class AccessRequestRepository(ABC):
    """Durable store of consent requests."""

    @abstractmethod
    async def get(self, request_id: str) -> AccessRequest | None:
        pass

    @abstractmethod
    async def find_pending(
        self,
        professional_id: str,
        patient_id: str,
        document_id: str | None,
    ) -> AccessRequest | None:
        """The PENDING request for a triple, if any (expired or not)."""
        pass

    @abstractmethod
    async def add(self, request: AccessRequest) -> AccessRequest:
        """Insert a new request.

        Raises:
            DuplicatePendingRequest: If a PENDING request exists for its triple
        """
        pass

    @abstractmethod
    async def resolve(
        self,
        request_id: str,
        status: AccessRequestStatus,
        now: datetime,
        response: str | None = None,
    ) -> AccessRequest | None:
        """Move a PENDING, unexpired request to APPROVED or DENIED.

        The status check and the write are one atomic step.

        Returns:
            The updated request, or None if it was no longer PENDING or had
            already expired at ``now``
        """
        pass

    @abstractmethod
    async def expire(self, request_id: str, now: datetime) -> AccessRequest | None:
        """Move a PENDING request past its deadline to EXPIRED.

        Returns:
            The updated request, or None if the guard did not hold
        """
        pass

    @abstractmethod
    async def find_overdue_ids(
        self,
        now: datetime,
        patient_id: str | None = None,
        limit: int | None = None,
    ) -> list[str]:
        """Ids of PENDING requests whose deadline is before ``now``."""
        pass

    @abstractmethod
    async def list_for_patient(
        self,
        patient_id: str,
        status: AccessRequestStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[AccessRequest], int]:
        """One page of a patient's requests, newest first, plus the total."""
        pass

    @abstractmethod
    async def count_pending(self, patient_id: str, now: datetime) -> int:
        """Count actionable (PENDING and not yet expired) requests."""
        pass
