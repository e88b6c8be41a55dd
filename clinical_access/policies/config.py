"""Typed policy configurations.

Each policy type has its own configuration model. Raw JSON documents (as
received from the API or stored in the database) are turned into one of
these models by ``parse_policy_config``, so malformed configurations are
rejected when a policy is built rather than silently failing to match at
evaluation time.
"""

import re
from datetime import datetime, time
from enum import Enum
from typing import Any, ClassVar, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from clinical_access.core.exceptions import ValidationError
from clinical_access.policies.models import (
    AccessContext,
    DocumentType,
    PolicyType,
    normalize_specialty,
)

_HOUR_WINDOW = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})\s*$")


class Weekday(str, Enum):
    """Days of the week, indexed like ``datetime.weekday()``."""

    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def from_datetime(cls, value: datetime) -> "Weekday":
        return list(cls)[value.weekday()]


def parse_hour_window(value: str) -> tuple[time, time]:
    """Parse an ``HH:MM-HH:MM`` window.

    Raises:
        ValueError: If the window is not well formed
    """
    match = _HOUR_WINDOW.match(value)
    if not match:
        raise ValueError(f"allowedHours must look like HH:MM-HH:MM, got {value!r}")
    sh, sm, eh, em = (int(g) for g in match.groups())
    try:
        return time(sh, sm), time(eh, em)
    except ValueError as e:
        raise ValueError(f"allowedHours has an invalid time: {value!r}") from e


class _BaseConfig(BaseModel):
    """Common model settings: camelCase on the wire, immutable, strict keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    policy_type: ClassVar[PolicyType]

    def matches(self, context: AccessContext, now: datetime) -> bool:
        raise NotImplementedError

    @property
    def denied_entries(self) -> frozenset:
        return frozenset()


class _AllowDenyConfig(_BaseConfig):
    """Shared validation for list-shaped configs: at least one list is required."""

    allowed_field: ClassVar[str]
    denied_field: ClassVar[str]

    @model_validator(mode="after")
    def require_a_list(self) -> "_AllowDenyConfig":
        if not getattr(self, self.allowed_field) and not getattr(self, self.denied_field):
            raise ValueError(
                f"{self.policy_type.value} config requires a non-empty allowed or denied list"
            )
        return self

    @property
    def denied_entries(self) -> frozenset:
        return getattr(self, self.denied_field)


class DocumentTypeConfig(_AllowDenyConfig):
    policy_type: ClassVar[PolicyType] = PolicyType.DOCUMENT_TYPE
    allowed_field: ClassVar[str] = "allowed_types"
    denied_field: ClassVar[str] = "denied_types"

    allowed_types: frozenset[DocumentType] = Field(default_factory=frozenset, alias="allowedTypes")
    denied_types: frozenset[DocumentType] = Field(default_factory=frozenset, alias="deniedTypes")

    def matches(self, context: AccessContext, now: datetime) -> bool:
        return context.document_type in self.allowed_types or context.document_type in self.denied_types


class ProfessionalConfig(_AllowDenyConfig):
    policy_type: ClassVar[PolicyType] = PolicyType.PROFESSIONAL
    allowed_field: ClassVar[str] = "allowed_professionals"
    denied_field: ClassVar[str] = "denied_professionals"

    allowed_professionals: frozenset[str] = Field(
        default_factory=frozenset, alias="allowedProfessionals"
    )
    denied_professionals: frozenset[str] = Field(
        default_factory=frozenset, alias="deniedProfessionals"
    )

    @field_validator("allowed_professionals", "denied_professionals", mode="after")
    @classmethod
    def normalize_ids(cls, value: frozenset[str]) -> frozenset[str]:
        return frozenset(v.strip().lower() for v in value if v and v.strip())

    def matches(self, context: AccessContext, now: datetime) -> bool:
        professional = context.professional_id.strip().lower()
        # Deny-list is consulted first
        if professional in self.denied_professionals:
            return True
        return professional in self.allowed_professionals


class SpecialtyConfig(_AllowDenyConfig):
    policy_type: ClassVar[PolicyType] = PolicyType.SPECIALTY
    allowed_field: ClassVar[str] = "allowed_specialties"
    denied_field: ClassVar[str] = "denied_specialties"

    allowed_specialties: frozenset[str] = Field(
        default_factory=frozenset, alias="allowedSpecialties"
    )
    denied_specialties: frozenset[str] = Field(
        default_factory=frozenset, alias="deniedSpecialties"
    )

    @field_validator("allowed_specialties", "denied_specialties", mode="after")
    @classmethod
    def normalize_names(cls, value: frozenset[str]) -> frozenset[str]:
        return frozenset(normalize_specialty(v) for v in value if v and v.strip())

    def matches(self, context: AccessContext, now: datetime) -> bool:
        specialties = context.normalized_specialties
        if specialties & self.denied_specialties:
            return True
        return bool(specialties & self.allowed_specialties)


class ClinicConfig(_AllowDenyConfig):
    policy_type: ClassVar[PolicyType] = PolicyType.CLINIC
    allowed_field: ClassVar[str] = "allowed_clinics"
    denied_field: ClassVar[str] = "denied_clinics"

    allowed_clinics: frozenset[str] = Field(default_factory=frozenset, alias="allowedClinics")
    denied_clinics: frozenset[str] = Field(default_factory=frozenset, alias="deniedClinics")

    def matches(self, context: AccessContext, now: datetime) -> bool:
        if context.clinic_id is None:
            return False
        return context.clinic_id in self.denied_clinics or context.clinic_id in self.allowed_clinics


class TimeBasedConfig(_BaseConfig):
    """Weekday plus time-of-day window.

    A missing ``allowedDays`` means every day and a missing ``allowedHours``
    means the whole day, but at least one of them must be given. Both hour
    bounds are inclusive; a window whose end is before its start wraps past
    midnight. Weekday and time are read in ``timezone``.
    """

    policy_type: ClassVar[PolicyType] = PolicyType.TIME_BASED

    allowed_days: frozenset[Weekday] = Field(default_factory=frozenset, alias="allowedDays")
    allowed_hours: str | None = Field(None, alias="allowedHours")
    timezone: str = "UTC"

    @field_validator("allowed_days", mode="before")
    @classmethod
    def upper_days(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set, frozenset)):
            return [v.strip().upper() if isinstance(v, str) else v for v in value]
        return value

    @field_validator("allowed_hours")
    @classmethod
    def check_hours(cls, value: str | None) -> str | None:
        if value is not None:
            parse_hour_window(value)
        return value

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value!r}") from e
        return value

    @model_validator(mode="after")
    def require_window(self) -> "TimeBasedConfig":
        if not self.allowed_days and self.allowed_hours is None:
            raise ValueError("TIME_BASED config requires allowedDays or allowedHours")
        return self

    def matches(self, context: AccessContext, now: datetime) -> bool:
        local = now.astimezone(ZoneInfo(self.timezone))

        if self.allowed_days and Weekday.from_datetime(local) not in self.allowed_days:
            return False

        if self.allowed_hours is None:
            return True

        start, end = parse_hour_window(self.allowed_hours)
        current = local.time().replace(second=0, microsecond=0)
        if start <= end:
            return start <= current <= end
        return current >= start or current <= end


class EmergencyOverrideConfig(_BaseConfig):
    """Break-glass access.

    Emergency overrides are always audited, so ``requiresAudit`` may be
    omitted but cannot be turned off.
    """

    policy_type: ClassVar[PolicyType] = PolicyType.EMERGENCY_OVERRIDE

    enabled: bool
    requires_audit: bool = Field(True, alias="requiresAudit")
    requires_justification: bool = Field(False, alias="requiresJustification")
    notify_patient: bool = Field(False, alias="notifyPatient")

    @field_validator("requires_audit")
    @classmethod
    def audit_is_mandatory(cls, value: bool) -> bool:
        if not value:
            raise ValueError("EMERGENCY_OVERRIDE policies cannot disable requiresAudit")
        return value

    def matches(self, context: AccessContext, now: datetime) -> bool:
        return self.enabled


PolicyConfig = Union[
    DocumentTypeConfig,
    ProfessionalConfig,
    SpecialtyConfig,
    ClinicConfig,
    TimeBasedConfig,
    EmergencyOverrideConfig,
]

CONFIG_MODELS: dict[PolicyType, type[_BaseConfig]] = {
    PolicyType.DOCUMENT_TYPE: DocumentTypeConfig,
    PolicyType.PROFESSIONAL: ProfessionalConfig,
    PolicyType.SPECIALTY: SpecialtyConfig,
    PolicyType.CLINIC: ClinicConfig,
    PolicyType.TIME_BASED: TimeBasedConfig,
    PolicyType.EMERGENCY_OVERRIDE: EmergencyOverrideConfig,
}


def _describe(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        msg = item.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_policy_config(policy_type: PolicyType | str, raw: dict[str, Any] | None) -> PolicyConfig:
    """Build the typed configuration for a policy type.

    Args:
        policy_type: Policy type (enum or its string value)
        raw: Configuration document with camelCase keys

    Returns:
        The configuration model registered for ``policy_type``

    Raises:
        ValidationError: If the type is unknown or the document is invalid
    """
    try:
        policy_type = PolicyType(policy_type)
    except ValueError as e:
        raise ValidationError(f"Unknown policy type: {policy_type}") from e

    if raw is None:
        raise ValidationError(f"{policy_type.value} policy requires a configuration")
    if not isinstance(raw, dict):
        raise ValidationError("Policy configuration must be a JSON object")

    model = CONFIG_MODELS[policy_type]
    try:
        return model.model_validate(raw)  # type: ignore[return-value]
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {policy_type.value} configuration: {_describe(e)}"
        ) from e


def dump_policy_config(config: PolicyConfig) -> dict[str, Any]:
    """Serialize a configuration to its camelCase JSON form.

    Set-valued fields are emitted as sorted lists so stored documents are
    stable across writes.
    """
    data = config.model_dump(mode="json", by_alias=True)
    return {
        key: sorted(value) if isinstance(value, list) else value
        for key, value in data.items()
    }
