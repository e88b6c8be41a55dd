"""Patient access policy engine."""

from clinical_access.policies.config import PolicyConfig, dump_policy_config, parse_policy_config
from clinical_access.policies.engine import PENDING_REASON, PolicyEngine
from clinical_access.policies.models import (
    AccessContext,
    Decision,
    DocumentType,
    MedicalSpecialty,
    Policy,
    PolicyEffect,
    PolicyEvaluationResult,
    PolicyType,
)

__all__ = [
    "AccessContext",
    "Decision",
    "DocumentType",
    "MedicalSpecialty",
    "PENDING_REASON",
    "Policy",
    "PolicyConfig",
    "PolicyEffect",
    "PolicyEngine",
    "PolicyEvaluationResult",
    "PolicyType",
    "dump_policy_config",
    "parse_policy_config",
]
