"""Deterministic access policy engine.

Given an access attempt and the owning patient's policies, decides one of
PERMIT, DENY or PENDING. The engine:
- Is pure (the current time is passed in, nothing is read or written)
- Lets an enabled emergency override win over every other policy
- Otherwise picks the matching policy with the highest priority, with the
  most recently created policy winning ties
- Records every policy it considered, in evaluation order, for audit

No match is a normal outcome (PENDING), never an error.
"""

import logging
from datetime import datetime
from typing import Iterable, cast

from clinical_access.core.exceptions import ValidationError
from clinical_access.policies.config import EmergencyOverrideConfig
from clinical_access.policies.models import (
    AccessContext,
    Decision,
    Policy,
    PolicyEffect,
    PolicyEvaluationResult,
    PolicyType,
)

logger = logging.getLogger(__name__)

PENDING_REASON = "no applicable policy; patient approval required."


def _rank(policy: Policy) -> tuple:
    # Priority first, then the later creation, then id for full determinism
    return (policy.priority, policy.created_at, policy.id)


class PolicyEngine:
    """Evaluates access contexts against a patient's policy set."""

    def evaluate(
        self,
        context: AccessContext,
        policies: Iterable[Policy],
        now: datetime,
    ) -> PolicyEvaluationResult:
        """Decide a single access attempt.

        Args:
            context: The access attempt
            policies: Candidate policies, normally the patient's cached set
            now: Timezone-aware evaluation time

        Returns:
            PolicyEvaluationResult with decision, reason and audit trail

        Raises:
            ValidationError: If the context or time is malformed
        """
        if context is None:
            raise ValidationError("Access context is required")
        context.validate()
        if now is None or now.tzinfo is None:
            raise ValidationError("Evaluation time must be timezone-aware")
        if policies is None:
            raise ValidationError("Policy set is required")

        owned = [p for p in policies if p.patient_id == context.patient_id]
        valid = [p for p in owned if p.is_valid_at(now)]
        evaluated_ids = [p.id for p in valid]

        in_scope = [p for p in valid if p.applies_to_document(context.document_id)]

        emergency = [
            p
            for p in in_scope
            if p.policy_type == PolicyType.EMERGENCY_OVERRIDE and p.config.matches(context, now)
        ]
        if emergency:
            return self._emergency_result(context, max(emergency, key=_rank), evaluated_ids)

        matching = [
            p
            for p in in_scope
            if p.policy_type != PolicyType.EMERGENCY_OVERRIDE and p.config.matches(context, now)
        ]

        if not matching:
            logger.debug(
                "No applicable policy",
                extra={"action": "policy_evaluation", "professional_id": context.professional_id},
            )
            return PolicyEvaluationResult(
                decision=Decision.PENDING,
                reason=PENDING_REASON,
                evaluated_policy_ids=evaluated_ids,
                deciding_policy_id=None,
            )

        selected = max(matching, key=_rank)
        decision = Decision.PERMIT if selected.effect == PolicyEffect.PERMIT else Decision.DENY
        verb = "permitted" if decision == Decision.PERMIT else "denied"
        reason = (
            f"Access {verb} by {selected.policy_type.value} policy {selected.id} "
            f"(priority {selected.priority}; {len(matching)} of "
            f"{len(evaluated_ids)} evaluated policies matched)"
        )

        return PolicyEvaluationResult(
            decision=decision,
            reason=reason,
            evaluated_policy_ids=evaluated_ids,
            deciding_policy_id=selected.id,
        )

    def _emergency_result(
        self,
        context: AccessContext,
        policy: Policy,
        evaluated_ids: list[str],
    ) -> PolicyEvaluationResult:
        """Build the PERMIT result for an emergency override."""
        config = cast(EmergencyOverrideConfig, policy.config)

        reason = (
            f"Access permitted by EMERGENCY_OVERRIDE policy {policy.id}; "
            f"requiresAudit=true"
        )
        if config.requires_justification and not (
            context.request_reason and context.request_reason.strip()
        ):
            reason += "; justification required but not provided"
        if config.notify_patient:
            reason += "; patient will be notified"

        return PolicyEvaluationResult(
            decision=Decision.PERMIT,
            reason=reason,
            evaluated_policy_ids=evaluated_ids,
            deciding_policy_id=policy.id,
            requires_audit=True,
        )
