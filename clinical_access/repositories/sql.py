"""SQLAlchemy-backed stores."""

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clinical_access.core.exceptions import NotFoundError
from clinical_access.models.access_policy import AccessPolicy
from clinical_access.models.access_request import (
    AccessRequest,
    AccessRequestStatus,
    pending_key,
)
from clinical_access.policies.config import dump_policy_config
from clinical_access.policies.models import Policy, PolicyType
from clinical_access.repositories.base import (
    AccessRequestRepository,
    DuplicatePendingRequest,
    PolicyRepository,
)


class SqlPolicyRepository(PolicyRepository):
    """Policy store on the ``access_policies`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_patient(self, patient_id: str) -> list[Policy]:
        result = await self.session.execute(
            select(AccessPolicy)
            .where(AccessPolicy.patient_id == patient_id)
            .order_by(AccessPolicy.created_at, AccessPolicy.id)
        )
        return [row.to_policy() for row in result.scalars().all()]

    async def list_for_patient(
        self,
        patient_id: str,
        policy_type: PolicyType | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Policy], int]:
        query = select(AccessPolicy).where(AccessPolicy.patient_id == patient_id)
        if policy_type is not None:
            query = query.where(AccessPolicy.policy_type == policy_type.value)

        count_result = await self.session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar() or 0

        result = await self.session.execute(
            query.order_by(AccessPolicy.priority.desc(), AccessPolicy.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return [row.to_policy() for row in result.scalars().all()], total

    async def get(self, policy_id: str) -> Policy | None:
        row = await self.session.get(AccessPolicy, policy_id)
        return row.to_policy() if row else None

    async def add(self, policy: Policy) -> Policy:
        row = AccessPolicy(
            id=policy.id,
            patient_id=policy.patient_id,
            policy_type=policy.policy_type.value,
            policy_config=dump_policy_config(policy.config),
            effect=policy.effect.value,
            priority=policy.priority,
            document_id=policy.document_id,
            valid_from=policy.valid_from,
            valid_until=policy.valid_until,
            created_at=policy.created_at,
        )
        self.session.add(row)
        await self.session.commit()
        await self.session.refresh(row)
        return row.to_policy()

    async def update(self, policy: Policy) -> Policy:
        row = await self.session.get(AccessPolicy, policy.id)
        if row is None:
            raise NotFoundError(f"Policy {policy.id} not found")

        row.policy_type = policy.policy_type.value
        row.policy_config = dump_policy_config(policy.config)
        row.effect = policy.effect.value
        row.priority = policy.priority
        row.document_id = policy.document_id
        row.valid_from = policy.valid_from
        row.valid_until = policy.valid_until
        row.updated_at = policy.updated_at

        await self.session.commit()
        await self.session.refresh(row)
        return row.to_policy()

    async def delete(self, policy_id: str) -> bool:
        result = await self.session.execute(
            delete(AccessPolicy).where(AccessPolicy.id == policy_id)
        )
        await self.session.commit()
        return result.rowcount > 0

    async def delete_for_patient(self, patient_id: str) -> int:
        result = await self.session.execute(
            delete(AccessPolicy).where(AccessPolicy.patient_id == patient_id)
        )
        await self.session.commit()
        return result.rowcount or 0

    async def count_for_patient(self, patient_id: str) -> int:
        result = await self.session.execute(
            select(func.count(AccessPolicy.id)).where(AccessPolicy.patient_id == patient_id)
        )
        return result.scalar() or 0


class SqlAccessRequestRepository(AccessRequestRepository):
    """Consent request store on the ``access_requests`` table.

    Status changes are compare-and-set UPDATEs guarded on ``status =
    'PENDING'``, so a patient decision and the expiration sweep cannot both
    win.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _reload(self, request_id: str) -> AccessRequest | None:
        return await self.session.get(AccessRequest, request_id, populate_existing=True)

    async def get(self, request_id: str) -> AccessRequest | None:
        return await self._reload(request_id)

    async def find_pending(
        self,
        professional_id: str,
        patient_id: str,
        document_id: str | None,
    ) -> AccessRequest | None:
        result = await self.session.execute(
            select(AccessRequest)
            .where(
                AccessRequest.pending_key == pending_key(professional_id, patient_id, document_id),
                AccessRequest.status == AccessRequestStatus.PENDING.value,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, request: AccessRequest) -> AccessRequest:
        self.session.add(request)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise DuplicatePendingRequest(request.pending_key) from e
        await self.session.refresh(request)
        return request

    async def _transition(self, stmt, request_id: str) -> AccessRequest | None:
        result = await self.session.execute(stmt)
        await self.session.commit()
        if result.rowcount == 0:
            return None
        return await self._reload(request_id)

    async def resolve(
        self,
        request_id: str,
        status: AccessRequestStatus,
        now: datetime,
        response: str | None = None,
    ) -> AccessRequest | None:
        if status not in (AccessRequestStatus.APPROVED, AccessRequestStatus.DENIED):
            raise ValueError(f"resolve() cannot set {status.value}")
        stmt = (
            update(AccessRequest)
            .where(
                AccessRequest.id == request_id,
                AccessRequest.status == AccessRequestStatus.PENDING.value,
                AccessRequest.expires_at >= now,
            )
            .values(
                status=status.value,
                patient_response=response,
                responded_at=now,
                pending_key=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return await self._transition(stmt, request_id)

    async def expire(self, request_id: str, now: datetime) -> AccessRequest | None:
        stmt = (
            update(AccessRequest)
            .where(
                AccessRequest.id == request_id,
                AccessRequest.status == AccessRequestStatus.PENDING.value,
                AccessRequest.expires_at < now,
            )
            .values(
                status=AccessRequestStatus.EXPIRED.value,
                pending_key=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return await self._transition(stmt, request_id)

    async def find_overdue_ids(
        self,
        now: datetime,
        patient_id: str | None = None,
        limit: int | None = None,
    ) -> list[str]:
        query = select(AccessRequest.id).where(
            AccessRequest.status == AccessRequestStatus.PENDING.value,
            AccessRequest.expires_at < now,
        )
        if patient_id is not None:
            query = query.where(AccessRequest.patient_id == patient_id)
        query = query.order_by(AccessRequest.expires_at)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_for_patient(
        self,
        patient_id: str,
        status: AccessRequestStatus | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[AccessRequest], int]:
        query = select(AccessRequest).where(AccessRequest.patient_id == patient_id)
        if status is not None:
            query = query.where(AccessRequest.status == status.value)

        count_result = await self.session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar() or 0

        result = await self.session.execute(
            query.order_by(AccessRequest.requested_at.desc(), AccessRequest.id)
            .offset(offset)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all()), total

    async def count_pending(self, patient_id: str, now: datetime) -> int:
        result = await self.session.execute(
            select(func.count(AccessRequest.id)).where(
                AccessRequest.patient_id == patient_id,
                AccessRequest.status == AccessRequestStatus.PENDING.value,
                AccessRequest.expires_at >= now,
            )
        )
        return result.scalar() or 0
