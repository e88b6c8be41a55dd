"""Policy domain types used by the evaluation engine.

These are plain dataclasses detached from the ORM so that policy sets can
be cached and evaluated without a database session.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from clinical_access.core.exceptions import ValidationError

if TYPE_CHECKING:
    from clinical_access.policies.config import PolicyConfig


class PolicyType(str, Enum):
    """Kind of predicate a policy applies to a request."""

    DOCUMENT_TYPE = "DOCUMENT_TYPE"
    PROFESSIONAL = "PROFESSIONAL"
    SPECIALTY = "SPECIALTY"
    CLINIC = "CLINIC"
    TIME_BASED = "TIME_BASED"
    EMERGENCY_OVERRIDE = "EMERGENCY_OVERRIDE"


class PolicyEffect(str, Enum):
    """Outcome a matching policy yields."""

    PERMIT = "PERMIT"
    DENY = "DENY"


class Decision(str, Enum):
    """Engine output."""

    PERMIT = "PERMIT"
    DENY = "DENY"
    PENDING = "PENDING"


class DocumentType(str, Enum):
    """Clinical document types registered in the national document index."""

    CLINICAL_NOTE = "CLINICAL_NOTE"
    LAB_RESULT = "LAB_RESULT"
    IMAGING = "IMAGING"
    PRESCRIPTION = "PRESCRIPTION"
    DISCHARGE_SUMMARY = "DISCHARGE_SUMMARY"
    VACCINATION_RECORD = "VACCINATION_RECORD"
    SURGICAL_REPORT = "SURGICAL_REPORT"
    PATHOLOGY_REPORT = "PATHOLOGY_REPORT"
    EMERGENCY_REPORT = "EMERGENCY_REPORT"
    REFERRAL = "REFERRAL"
    PROGRESS_NOTE = "PROGRESS_NOTE"
    ALLERGY_RECORD = "ALLERGY_RECORD"
    VITAL_SIGNS = "VITAL_SIGNS"
    DIAGNOSTIC_REPORT = "DIAGNOSTIC_REPORT"
    TREATMENT_PLAN = "TREATMENT_PLAN"
    INFORMED_CONSENT = "INFORMED_CONSENT"
    MENTAL_HEALTH = "MENTAL_HEALTH"
    GENETIC_TEST = "GENETIC_TEST"


class MedicalSpecialty(str, Enum):
    """Known medical specialties (value is the display name)."""

    CARDIOLOGIA = "Cardiologia"
    MEDICINA_GENERAL = "Medicina General"
    ONCOLOGIA = "Oncologia"
    PEDIATRIA = "Pediatria"
    NEUROLOGIA = "Neurologia"
    CIRUGIA = "Cirugia"
    GINECOLOGIA = "Ginecologia"
    DERMATOLOGIA = "Dermatologia"
    PSIQUIATRIA = "Psiquiatria"
    TRAUMATOLOGIA = "Traumatologia"

    @classmethod
    def from_name(cls, name: str | None) -> "MedicalSpecialty | None":
        """Resolve by code or display name, case-insensitively."""
        if not name:
            return None
        wanted = name.strip().lower()
        for specialty in cls:
            if specialty.name.lower() == wanted or specialty.value.lower() == wanted:
                return specialty
        alias = _SPECIALTY_ALIASES.get(wanted.upper().replace(" ", "_"))
        return cls[alias] if alias else None


# English codes accepted alongside the catalogue names
_SPECIALTY_ALIASES = {
    "CARDIOLOGY": "CARDIOLOGIA",
    "GENERAL_MEDICINE": "MEDICINA_GENERAL",
    "ONCOLOGY": "ONCOLOGIA",
    "PEDIATRICS": "PEDIATRIA",
    "NEUROLOGY": "NEUROLOGIA",
    "SURGERY": "CIRUGIA",
    "GYNECOLOGY": "GINECOLOGIA",
    "DERMATOLOGY": "DERMATOLOGIA",
    "PSYCHIATRY": "PSIQUIATRIA",
    "TRAUMATOLOGY": "TRAUMATOLOGIA",
}


def normalize_specialty(name: str) -> str:
    """Canonical comparison key for a specialty name."""
    known = MedicalSpecialty.from_name(name)
    if known is not None:
        return known.name
    return name.strip().upper()


@dataclass(frozen=True)
class AccessContext:
    """A single document-access attempt by a professional."""

    professional_id: str
    patient_id: str
    document_type: DocumentType
    specialties: frozenset[str] = frozenset()
    clinic_id: str | None = None
    document_id: str | None = None
    request_reason: str | None = None

    def validate(self) -> None:
        """Reject contexts the engine cannot evaluate.

        Raises:
            ValidationError: If a required attribute is unset
        """
        if not self.patient_id or not self.patient_id.strip():
            raise ValidationError("Access context requires a patient id")
        if not self.professional_id or not self.professional_id.strip():
            raise ValidationError("Access context requires a professional id")
        if self.document_type is None:
            raise ValidationError("Access context requires a document type")

    @property
    def normalized_specialties(self) -> frozenset[str]:
        return frozenset(normalize_specialty(s) for s in self.specialties if s)


@dataclass(frozen=True)
class Policy:
    """One patient-owned access rule.

    ``config`` must be the variant registered for ``policy_type``; a
    mismatch is rejected at construction.
    """

    id: str
    patient_id: str
    policy_type: PolicyType
    config: "PolicyConfig"
    effect: PolicyEffect
    priority: int
    created_at: datetime
    document_id: str | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.config.policy_type != self.policy_type:
            raise ValidationError(
                f"Configuration for {self.config.policy_type.value} cannot be "
                f"used with a {self.policy_type.value} policy"
            )
        if (
            self.policy_type == PolicyType.EMERGENCY_OVERRIDE
            and self.effect != PolicyEffect.PERMIT
        ):
            raise ValidationError("EMERGENCY_OVERRIDE policies must have effect PERMIT")
        # A deny-list hit must never grant access
        if self.effect == PolicyEffect.PERMIT and self.config.denied_entries:
            raise ValidationError(
                f"{self.policy_type.value} deny-list entries require effect DENY"
            )
        if (
            self.valid_from is not None
            and self.valid_until is not None
            and self.valid_until < self.valid_from
        ):
            raise ValidationError("validUntil must not be earlier than validFrom")

    def is_valid_at(self, now: datetime) -> bool:
        """Check validFrom <= now <= validUntil, missing bounds unbounded."""
        if self.valid_from is not None and now < self.valid_from:
            return False
        if self.valid_until is not None and now > self.valid_until:
            return False
        return True

    def applies_to_document(self, document_id: str | None) -> bool:
        """Global policies cover every document; scoped ones a single one."""
        return self.document_id is None or self.document_id == document_id


@dataclass
class PolicyEvaluationResult:
    """Outcome of one evaluation, with its audit trail."""

    decision: Decision
    reason: str
    evaluated_policy_ids: list[str] = field(default_factory=list)
    deciding_policy_id: str | None = None
    requires_audit: bool = False

    @property
    def is_permitted(self) -> bool:
        return self.decision == Decision.PERMIT

    @property
    def is_denied(self) -> bool:
        return self.decision == Decision.DENY

    @property
    def is_pending(self) -> bool:
        return self.decision == Decision.PENDING
