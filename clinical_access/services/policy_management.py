"""Patient policy management.

All writes go through ``PolicyCache.writing`` so the patient's cached
policy set is dropped before the write is acknowledged.
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from clinical_access.core.config import settings
from clinical_access.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from clinical_access.core.logging import mask_ci
from clinical_access.db.base import utc_now
from clinical_access.models.audit_event import ActorType
from clinical_access.policies.config import dump_policy_config, parse_policy_config
from clinical_access.policies.loader import TemplateCatalogue, template_catalogue
from clinical_access.policies.models import Policy, PolicyEffect, PolicyType
from clinical_access.repositories.base import PolicyRepository
from clinical_access.services.audit import AuditTrail
from clinical_access.services.policy_cache import PolicyCache, policy_cache

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {"policy_config", "effect", "priority", "document_id", "valid_from", "valid_until"}
)


def _as_utc(value: datetime | None) -> datetime | None:
    # Naive datetimes from clients are read as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_effect(value: PolicyEffect | str) -> PolicyEffect:
    try:
        return PolicyEffect(value.upper() if isinstance(value, str) else value)
    except ValueError as e:
        raise ValidationError(f"Invalid policy effect: {value}") from e


def _parse_type(value: PolicyType | str) -> PolicyType:
    try:
        return PolicyType(value.upper() if isinstance(value, str) else value)
    except ValueError as e:
        raise ValidationError(f"Invalid policy type: {value}") from e


class PolicyManagementService:
    """Create, read, update and delete a patient's access policies."""

    def __init__(
        self,
        policies: PolicyRepository,
        audit: AuditTrail,
        cache: PolicyCache | None = None,
        catalogue: TemplateCatalogue | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.policies = policies
        self.audit = audit
        self.cache = cache or policy_cache
        self.catalogue = catalogue or template_catalogue
        self.clock = clock

    def _check_priority(self, priority: int) -> None:
        low, high = settings.policy_priority_min, settings.policy_priority_max
        if not low <= priority <= high:
            raise ValidationError(f"Priority must be between {low} and {high}")

    async def _load_owned(self, policy_id: str, patient_id: str) -> Policy:
        policy = await self.policies.get(policy_id)
        if policy is None:
            raise NotFoundError(f"Policy {policy_id} not found")
        if policy.patient_id != patient_id:
            logger.warning(
                "Patient %s attempted to access policy %s owned by another patient",
                mask_ci(patient_id),
                policy_id,
            )
            raise ForbiddenError("Policy belongs to another patient")
        return policy

    async def create_policy(
        self,
        patient_id: str,
        policy_type: PolicyType | str,
        policy_config: dict[str, Any] | None,
        effect: PolicyEffect | str,
        priority: int | None = None,
        document_id: str | None = None,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
    ) -> Policy:
        """Create a policy for a patient.

        Args:
            patient_id: Owning patient CI
            policy_type: Policy type
            policy_config: Type-specific configuration document
            effect: PERMIT or DENY
            priority: Priority; defaults to the type's template priority
            document_id: Restrict the policy to one document
            valid_from: Start of validity (inclusive)
            valid_until: End of validity (inclusive)

        Returns:
            Created policy

        Raises:
            ValidationError: If any field is invalid
        """
        if not patient_id or not patient_id.strip():
            raise ValidationError("patientCi is required")

        parsed_type = _parse_type(policy_type)
        config = parse_policy_config(parsed_type, policy_config)
        if priority is None:
            priority = self.catalogue.default_priority(parsed_type)
        self._check_priority(priority)

        now = self.clock()
        policy = Policy(
            id=str(uuid4()),
            patient_id=patient_id,
            policy_type=parsed_type,
            config=config,
            effect=_parse_effect(effect),
            priority=priority,
            created_at=now,
            document_id=document_id or None,
            valid_from=_as_utc(valid_from),
            valid_until=_as_utc(valid_until),
        )

        async with self.cache.writing(patient_id):
            saved = await self.policies.add(policy)

        await self.audit.record(
            actor_type=ActorType.PATIENT,
            actor_id=patient_id,
            action="policy.created",
            action_category="policy",
            entity_type="access_policy",
            entity_id=saved.id,
            patient_id=patient_id,
            metadata={
                "policy_type": saved.policy_type.value,
                "effect": saved.effect.value,
                "priority": saved.priority,
                "document_id": saved.document_id,
            },
        )
        logger.info(
            "Created %s policy %s for patient %s",
            saved.policy_type.value,
            saved.id,
            mask_ci(patient_id),
        )
        return saved

    async def update_policy(
        self,
        policy_id: str,
        patient_id: str,
        changes: dict[str, Any],
    ) -> Policy:
        """Apply a partial update.

        Only keys present in ``changes`` are touched; an explicit None
        clears optional fields (document scope, validity bounds).

        Raises:
            ValidationError: If no updatable field is given or a value is invalid
            NotFoundError: If the policy does not exist
            ForbiddenError: If the policy belongs to another patient
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        if not changes:
            raise ValidationError("At least one field must be provided for update")

        current = await self._load_owned(policy_id, patient_id)

        fields: dict[str, Any] = {}
        if "policy_config" in changes:
            fields["config"] = parse_policy_config(current.policy_type, changes["policy_config"])
        if "effect" in changes:
            if changes["effect"] is None:
                raise ValidationError("effect cannot be cleared")
            fields["effect"] = _parse_effect(changes["effect"])
        if "priority" in changes:
            if changes["priority"] is None:
                raise ValidationError("priority cannot be cleared")
            self._check_priority(changes["priority"])
            fields["priority"] = changes["priority"]
        if "document_id" in changes:
            fields["document_id"] = changes["document_id"] or None
        if "valid_from" in changes:
            fields["valid_from"] = _as_utc(changes["valid_from"])
        if "valid_until" in changes:
            fields["valid_until"] = _as_utc(changes["valid_until"])

        updated = replace(current, updated_at=self.clock(), **fields)

        async with self.cache.writing(patient_id):
            saved = await self.policies.update(updated)

        await self.audit.record(
            actor_type=ActorType.PATIENT,
            actor_id=patient_id,
            action="policy.updated",
            action_category="policy",
            entity_type="access_policy",
            entity_id=policy_id,
            patient_id=patient_id,
            metadata={
                "fields": sorted(changes),
                "config": dump_policy_config(saved.config),
                "effect": saved.effect.value,
                "priority": saved.priority,
            },
        )
        return saved

    async def delete_policy(self, policy_id: str, patient_id: str) -> None:
        """Delete one of the patient's policies.

        Raises:
            NotFoundError: If the policy does not exist
            ForbiddenError: If the policy belongs to another patient
        """
        policy = await self._load_owned(policy_id, patient_id)

        async with self.cache.writing(patient_id):
            deleted = await self.policies.delete(policy_id)
        if not deleted:
            raise NotFoundError(f"Policy {policy_id} not found")

        await self.audit.record(
            actor_type=ActorType.PATIENT,
            actor_id=patient_id,
            action="policy.deleted",
            action_category="policy",
            entity_type="access_policy",
            entity_id=policy_id,
            patient_id=patient_id,
            metadata={"policy_type": policy.policy_type.value, "effect": policy.effect.value},
        )

    async def revoke_policy(self, policy_id: str, patient_id: str) -> Policy:
        """End a policy's validity now, keeping it for history.

        Raises:
            NotFoundError: If the policy does not exist
            ForbiddenError: If the policy belongs to another patient
        """
        current = await self._load_owned(policy_id, patient_id)
        now = self.clock()
        valid_from = current.valid_from
        if valid_from is not None and valid_from > now:
            # Never valid; collapse the window so it stays consistent
            valid_from = now
        revoked = replace(current, valid_from=valid_from, valid_until=now, updated_at=now)

        async with self.cache.writing(patient_id):
            saved = await self.policies.update(revoked)

        await self.audit.record(
            actor_type=ActorType.PATIENT,
            actor_id=patient_id,
            action="policy.revoked",
            action_category="policy",
            entity_type="access_policy",
            entity_id=policy_id,
            patient_id=patient_id,
            metadata={"valid_until": now.isoformat()},
        )
        return saved

    async def delete_all_policies(self, patient_id: str) -> int:
        """Delete every policy of the patient with a single invalidation.

        Returns:
            Number of policies deleted
        """
        async with self.cache.writing(patient_id):
            count = await self.policies.delete_for_patient(patient_id)

        await self.audit.record(
            actor_type=ActorType.PATIENT,
            actor_id=patient_id,
            action="policy.bulk_deleted",
            action_category="policy",
            entity_type="access_policy",
            entity_id=None,
            patient_id=patient_id,
            metadata={"deleted": count},
        )
        return count

    async def get_policy(self, policy_id: str, patient_id: str) -> Policy:
        """Read one of the patient's policies."""
        return await self._load_owned(policy_id, patient_id)

    async def list_policies(
        self,
        patient_id: str,
        policy_type: PolicyType | str | None = None,
        page: int = 0,
        size: int | None = None,
    ) -> tuple[list[Policy], int]:
        """One page of the patient's policies, highest priority first.

        ``size`` is capped at the configured maximum page size.
        """
        if page < 0:
            raise ValidationError("page must not be negative")
        if size is None:
            size = settings.default_page_size
        if size < 1:
            raise ValidationError("size must be positive")
        size = min(size, settings.max_page_size)

        parsed_type = _parse_type(policy_type) if policy_type else None
        return await self.policies.list_for_patient(
            patient_id, policy_type=parsed_type, offset=page * size, limit=size
        )

    async def count_policies(self, patient_id: str) -> int:
        return await self.policies.count_for_patient(patient_id)
