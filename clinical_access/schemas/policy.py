"""Pydantic schemas for policy management and evaluation."""

import json
from datetime import datetime
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator

from clinical_access.policies.config import dump_policy_config
from clinical_access.policies.models import DocumentType, Policy, PolicyEvaluationResult
from clinical_access.schemas.common import CamelModel


def _config_document(value: Any) -> Any:
    # Older clients send the configuration as a JSON string
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"policyConfig is not valid JSON: {e.msg}") from e
    return value


class PolicyCreate(CamelModel):
    """Schema for creating a policy.

    Either ``policyType`` + ``policyConfig``, or the short form with a single
    ``clinicId`` (a CLINIC policy) or ``specialty`` (a SPECIALTY policy).
    """

    patient_ci: Optional[str] = Field(None, description="Defaults to the caller")
    policy_type: Optional[str] = None
    policy_config: Optional[dict[str, Any]] = None
    policy_effect: Optional[str] = Field(None, description="PERMIT or DENY (short form defaults to PERMIT)")
    priority: Optional[int] = Field(None, description="Defaults to the template priority")
    document_id: Optional[str] = Field(None, max_length=128)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    clinic_id: Optional[str] = None
    specialty: Optional[str] = None

    @field_validator("policy_config", mode="before")
    @classmethod
    def parse_config_string(cls, value: Any) -> Any:
        return _config_document(value)

    @model_validator(mode="after")
    def resolve_short_form(self) -> "PolicyCreate":
        if self.policy_type:
            if self.clinic_id or self.specialty:
                raise ValueError("clinicId/specialty cannot be combined with policyType")
            return self
        if self.clinic_id and self.specialty:
            raise ValueError("Give either clinicId or specialty, not both")
        if self.clinic_id:
            self.policy_type = "CLINIC"
            self.policy_config = {"allowedClinics": [self.clinic_id]}
        elif self.specialty:
            self.policy_type = "SPECIALTY"
            self.policy_config = {"allowedSpecialties": [self.specialty]}
        else:
            raise ValueError("policyType (or clinicId / specialty) is required")
        if self.policy_effect is None:
            self.policy_effect = "PERMIT"
        return self

    @model_validator(mode="after")
    def require_effect(self) -> "PolicyCreate":
        if not self.policy_effect:
            raise ValueError("policyEffect is required")
        return self


class PolicyUpdate(CamelModel):
    """Schema for a partial policy update. Only fields sent are changed."""

    policy_config: Optional[dict[str, Any]] = None
    policy_effect: Optional[str] = None
    priority: Optional[int] = None
    document_id: Optional[str] = Field(None, max_length=128)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None

    @field_validator("policy_config", mode="before")
    @classmethod
    def parse_config_string(cls, value: Any) -> Any:
        return _config_document(value)

    def changes(self) -> dict[str, Any]:
        """Fields the client actually sent, keyed by service field name."""
        data = self.model_dump(exclude_unset=True)
        if "policy_effect" in data:
            data["effect"] = data.pop("policy_effect")
        return data


class PolicyRead(CamelModel):
    """Schema for reading a policy."""

    id: str
    patient_ci: str
    policy_type: str
    policy_config: dict[str, Any]
    policy_effect: str
    priority: int
    document_id: Optional[str]
    valid_from: Optional[datetime]
    valid_until: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]
    active: bool

    @classmethod
    def from_policy(cls, policy: Policy, now: datetime) -> "PolicyRead":
        return cls(
            id=policy.id,
            patient_ci=policy.patient_id,
            policy_type=policy.policy_type.value,
            policy_config=dump_policy_config(policy.config),
            policy_effect=policy.effect.value,
            priority=policy.priority,
            document_id=policy.document_id,
            valid_from=policy.valid_from,
            valid_until=policy.valid_until,
            created_at=policy.created_at,
            updated_at=policy.updated_at,
            active=policy.is_valid_at(now),
        )


class PolicyListResponse(CamelModel):
    policies: list[PolicyRead]
    total: int
    page: int
    size: int
    total_pages: int


class PolicyCountResponse(CamelModel):
    patient_ci: str
    count: int


class BulkDeleteResponse(CamelModel):
    deleted: int


class PolicyTemplateRead(CamelModel):
    """One entry of the template catalogue."""

    policy_type: str
    display_name: str
    description: str
    available_effects: list[str]
    default_priority: int
    example_configuration: dict[str, Any]


class PolicyTemplateCatalogue(CamelModel):
    version: str
    hash: str
    templates: list[PolicyTemplateRead]


class SpecialtyRead(CamelModel):
    value: str
    label: str


class EvaluationRequest(CamelModel):
    """Schema for an access evaluation."""

    professional_id: Optional[str] = Field(None, description="Defaults to the calling professional")
    specialties: list[str] = Field(default_factory=list)
    clinic_id: Optional[str] = None
    patient_ci: str = Field(..., min_length=1)
    document_id: Optional[str] = None
    document_type: DocumentType
    request_reason: Optional[str] = Field(None, max_length=2000)


class EvaluationResponse(CamelModel):
    decision: str
    reason: str
    evaluated_policies: list[str]
    deciding_policy: Optional[str]
    requires_audit: bool = False

    @classmethod
    def from_result(cls, result: PolicyEvaluationResult) -> "EvaluationResponse":
        return cls(
            decision=result.decision.value,
            reason=result.reason,
            evaluated_policies=result.evaluated_policy_ids,
            deciding_policy=result.deciding_policy_id,
            requires_audit=result.requires_audit,
        )
