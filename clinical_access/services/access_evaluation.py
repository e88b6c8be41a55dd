"""Access decisions for document access attempts."""

import logging
from collections.abc import Callable
from datetime import datetime

from clinical_access.core.logging import mask_ci
from clinical_access.db.base import utc_now
from clinical_access.models.audit_event import ActorType
from clinical_access.policies.config import EmergencyOverrideConfig
from clinical_access.policies.engine import PolicyEngine
from clinical_access.policies.models import AccessContext, PolicyEvaluationResult
from clinical_access.repositories.base import PolicyRepository
from clinical_access.services.audit import AuditTrail
from clinical_access.services.notifications import Notifier, deliver
from clinical_access.services.policy_cache import PolicyCache, policy_cache

logger = logging.getLogger(__name__)


class AccessEvaluationService:
    """Evaluates an access attempt against the patient's cached policies.

    Every decision is written to the audit trail. Emergency overrides are
    additionally logged at WARNING on the audit logger and, when the
    policy asks for it, reported to the patient.
    """

    def __init__(
        self,
        policies: PolicyRepository,
        audit: AuditTrail,
        notifier: Notifier,
        cache: PolicyCache | None = None,
        engine: PolicyEngine | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.policies = policies
        self.audit = audit
        self.notifier = notifier
        self.cache = cache or policy_cache
        self.engine = engine or PolicyEngine()
        self.clock = clock

    async def evaluate(self, context: AccessContext) -> PolicyEvaluationResult:
        """Decide an access attempt.

        Raises:
            ValidationError: If the context is malformed
            InternalError: If the policy set cannot be loaded
        """
        # Reject bad input before touching the store
        context.validate()

        policy_set = await self.cache.get(context.patient_id, self.policies)
        now = self.clock()
        result = self.engine.evaluate(context, policy_set, now)

        metadata = {
            "decision": result.decision.value,
            "deciding_policy_id": result.deciding_policy_id,
            "evaluated_policy_ids": result.evaluated_policy_ids,
            "document_id": context.document_id,
            "document_type": context.document_type.value,
            "clinic_id": context.clinic_id,
        }

        await self.audit.record(
            actor_type=ActorType.PROFESSIONAL,
            actor_id=context.professional_id,
            action="access.emergency_override" if result.requires_audit else "access.evaluated",
            action_category="access",
            entity_type="document",
            entity_id=context.document_id,
            patient_id=context.patient_id,
            metadata=metadata,
            description=result.reason,
            level=logging.WARNING if result.requires_audit else logging.INFO,
        )

        if result.requires_audit:
            deciding = next(
                (p for p in policy_set if p.id == result.deciding_policy_id), None
            )
            if (
                deciding is not None
                and isinstance(deciding.config, EmergencyOverrideConfig)
                and deciding.config.notify_patient
            ):
                await deliver(
                    self.notifier.emergency_access(context, deciding.id),
                    f"emergency access notice for policy {deciding.id}",
                )

        logger.info(
            "Access %s for professional %s on patient %s (%d policies evaluated)",
            result.decision.value,
            context.professional_id,
            mask_ci(context.patient_id),
            len(result.evaluated_policy_ids),
        )
        return result
