"""Tests for the database-backed stores."""

from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from clinical_access.core.exceptions import NotFoundError
from clinical_access.models.access_request import AccessRequest
from clinical_access.policies.models import PolicyEffect, PolicyType
from clinical_access.repositories.base import DuplicatePendingRequest
from clinical_access.repositories.sql import SqlAccessRequestRepository, SqlPolicyRepository
from tests.factories import FIXED_NOW, OTHER_PATIENT_CI, PATIENT_CI, PROFESSIONAL_ID, make_policy


@pytest.fixture
def policies(async_session: AsyncSession) -> SqlPolicyRepository:
    return SqlPolicyRepository(async_session)


class TestSqlPolicyRepository:
    async def test_stored_policy_reads_back_as_domain_policy(self, policies) -> None:
        policy = make_policy(
            PolicyType.TIME_BASED,
            {"allowedDays": ["MONDAY"], "allowedHours": "08:00-12:00", "timezone": "America/Montevideo"},
            valid_until=FIXED_NOW + timedelta(days=30),
        )

        await policies.add(policy)
        loaded = await policies.get(policy.id)

        assert loaded == policy
        assert loaded.valid_until.tzinfo is not None

    async def test_find_by_patient_is_oldest_first(self, policies) -> None:
        newer = make_policy(PolicyType.CLINIC, {"allowedClinics": ["c1"]}, created_at=FIXED_NOW)
        older = make_policy(
            PolicyType.CLINIC, {"allowedClinics": ["c2"]}, created_at=FIXED_NOW - timedelta(days=5)
        )
        other = make_policy(PolicyType.CLINIC, {"allowedClinics": ["c3"]}, patient_id=OTHER_PATIENT_CI)
        for policy in (newer, older, other):
            await policies.add(policy)

        found = await policies.find_by_patient(PATIENT_CI)

        assert [p.id for p in found] == [older.id, newer.id]

    async def test_update_and_delete(self, policies) -> None:
        policy = await policies.add(make_policy(PolicyType.CLINIC, {"allowedClinics": ["c1"]}))

        updated = await policies.update(
            replace(policy, effect=PolicyEffect.DENY, priority=60, updated_at=FIXED_NOW)
        )

        assert (updated.effect, updated.priority) == (PolicyEffect.DENY, 60)
        assert await policies.delete(policy.id) is True
        assert await policies.delete(policy.id) is False
        assert await policies.get(policy.id) is None

    async def test_update_missing_policy(self, policies) -> None:
        with pytest.raises(NotFoundError):
            await policies.update(make_policy(PolicyType.CLINIC, {"allowedClinics": ["c1"]}))


class TestSqlAccessRequestRepository:
    async def test_second_pending_row_for_a_triple_is_refused(self, async_session: AsyncSession) -> None:
        store = SqlAccessRequestRepository(async_session)

        def build() -> AccessRequest:
            return AccessRequest.open(PROFESSIONAL_ID, PATIENT_CI, FIXED_NOW, 48, document_id="doc-1")

        first = await store.add(build())
        with pytest.raises(DuplicatePendingRequest):
            await store.add(build())

        assert (await store.find_pending(PROFESSIONAL_ID, PATIENT_CI, "doc-1")).id == first.id
