"""In-memory stores for tests and local experiments."""

import asyncio
from datetime import datetime
from uuid import uuid4

from clinical_access.core.exceptions import NotFoundError
from clinical_access.models.access_request import (
    AccessRequest,
    AccessRequestStatus,
    pending_key,
)
from clinical_access.policies.models import Policy, PolicyType
from clinical_access.repositories.base import (
    AccessRequestRepository,
    DuplicatePendingRequest,
    PolicyRepository,
)


class InMemoryPolicyRepository(PolicyRepository):
    """Dict-backed policy store. Policies are immutable so no copying is needed."""

    def __init__(self, policies: list[Policy] | None = None) -> None:
        self._policies: dict[str, Policy] = {p.id: p for p in policies or []}

    async def find_by_patient(self, patient_id: str) -> list[Policy]:
        found = [p for p in self._policies.values() if p.patient_id == patient_id]
        return sorted(found, key=lambda p: (p.created_at, p.id))

    async def list_for_patient(
        self,
        patient_id: str,
        policy_type: PolicyType | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Policy], int]:
        found = [
            p
            for p in self._policies.values()
            if p.patient_id == patient_id and (policy_type is None or p.policy_type == policy_type)
        ]
        found.sort(key=lambda p: (p.priority, p.created_at), reverse=True)
        return found[offset : offset + limit], len(found)

    async def get(self, policy_id: str) -> Policy | None:
        return self._policies.get(policy_id)

    async def add(self, policy: Policy) -> Policy:
        self._policies[policy.id] = policy
        return policy

    async def update(self, policy: Policy) -> Policy:
        if policy.id not in self._policies:
            raise NotFoundError(f"Policy {policy.id} not found")
        self._policies[policy.id] = policy
        return policy

    async def delete(self, policy_id: str) -> bool:
        return self._policies.pop(policy_id, None) is not None

    async def delete_for_patient(self, patient_id: str) -> int:
        doomed = [pid for pid, p in self._policies.items() if p.patient_id == patient_id]
        for pid in doomed:
            del self._policies[pid]
        return len(doomed)

    async def count_for_patient(self, patient_id: str) -> int:
        return sum(1 for p in self._policies.values() if p.patient_id == patient_id)


class InMemoryAccessRequestRepository(AccessRequestRepository):
    """Dict-backed request store holding transient AccessRequest rows.

    A single lock makes each guarded transition atomic, mirroring the
    compare-and-set UPDATE of the database store.
    """

    def __init__(self) -> None:
        self._requests: dict[str, AccessRequest] = {}
        self._lock = asyncio.Lock()

    async def get(self, request_id: str) -> AccessRequest | None:
        return self._requests.get(request_id)

    async def find_pending(
        self,
        professional_id: str,
        patient_id: str,
        document_id: str | None,
    ) -> AccessRequest | None:
        key = pending_key(professional_id, patient_id, document_id)
        for request in self._requests.values():
            if request.pending_key == key and request.is_pending:
                return request
        return None

    async def add(self, request: AccessRequest) -> AccessRequest:
        async with self._lock:
            if request.pending_key and any(
                r.pending_key == request.pending_key for r in self._requests.values()
            ):
                raise DuplicatePendingRequest(request.pending_key)
            if request.id is None:
                # Column defaults only fire on flush
                request.id = str(uuid4())
            if request.created_at is None:
                request.created_at = request.requested_at
            self._requests[request.id] = request
            return request

    async def resolve(
        self,
        request_id: str,
        status: AccessRequestStatus,
        now: datetime,
        response: str | None = None,
    ) -> AccessRequest | None:
        if status not in (AccessRequestStatus.APPROVED, AccessRequestStatus.DENIED):
            raise ValueError(f"resolve() cannot set {status.value}")
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                return None
            try:
                if status == AccessRequestStatus.APPROVED:
                    request.approve(now, response)
                else:
                    request.deny(now, response or "")
            except ValueError:
                return None
            request.updated_at = now
            return request

    async def expire(self, request_id: str, now: datetime) -> AccessRequest | None:
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None or not request.is_pending or not request.is_expired_at(now):
                return None
            request.expire()
            request.updated_at = now
            return request

    async def find_overdue_ids(
        self,
        now: datetime,
        patient_id: str | None = None,
        limit: int | None = None,
    ) -> list[str]:
        overdue = sorted(
            (
                r
                for r in self._requests.values()
                if r.is_pending
                and r.is_expired_at(now)
                and (patient_id is None or r.patient_id == patient_id)
            ),
            key=lambda r: r.expires_at,
        )
        ids = [r.id for r in overdue]
        return ids[:limit] if limit is not None else ids

    async def list_for_patient(
        self,
        patient_id: str,
        status: AccessRequestStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[AccessRequest], int]:
        found = [
            r
            for r in self._requests.values()
            if r.patient_id == patient_id and (status is None or r.status == status.value)
        ]
        found.sort(key=lambda r: r.requested_at, reverse=True)
        return found[offset : offset + limit], len(found)

    async def count_pending(self, patient_id: str, now: datetime) -> int:
        return sum(
            1
            for r in self._requests.values()
            if r.patient_id == patient_id and r.is_pending and not r.is_expired_at(now)
        )
