"""Patient-owned access policy model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from clinical_access.db.base import Base, TimestampMixin, ensure_aware
from clinical_access.policies.config import parse_policy_config
from clinical_access.policies.models import Policy, PolicyEffect, PolicyType


class AccessPolicy(Base, TimestampMixin):
    """Stored access policy.

    The configuration is kept as a JSON document in its camelCase wire form
    and is only turned into a typed config by ``to_policy``. Rows are only
    written through PolicyManagementService so every document stored here
    has passed ``parse_policy_config``.
    """

    __tablename__ = "access_policies"
    __table_args__ = (
        Index("ix_access_policies_patient_type", "patient_id", "policy_type"),
    )

    # Patient CI; immutable after creation
    patient_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    policy_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    policy_config: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )
    effect: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    # Null means the policy covers every document of the patient
    document_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
    )
    valid_from: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    valid_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def to_policy(self) -> Policy:
        """Detached domain view used by the cache and the engine."""
        policy_type = PolicyType(self.policy_type)
        return Policy(
            id=self.id,
            patient_id=self.patient_id,
            policy_type=policy_type,
            config=parse_policy_config(policy_type, self.policy_config),
            effect=PolicyEffect(self.effect),
            priority=self.priority,
            created_at=ensure_aware(self.created_at),
            document_id=self.document_id,
            valid_from=ensure_aware(self.valid_from),
            valid_until=ensure_aware(self.valid_until),
            updated_at=ensure_aware(self.updated_at),
        )

    def __repr__(self) -> str:
        return (
            f"<AccessPolicy {self.policy_type}/{self.effect} p={self.priority} "
            f"patient={self.patient_id[:5]}***>"
        )
