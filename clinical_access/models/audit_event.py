"""Append-only audit event model."""

from enum import Enum

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clinical_access.db.base import Base, TimestampMixin


class ActorType(str, Enum):
    """Type of actor performing the action."""

    SYSTEM = "system"
    PATIENT = "patient"
    PROFESSIONAL = "professional"
    CLINIC = "clinic"


class AuditEvent(Base, TimestampMixin):
    """Append-only audit event.

    IMPORTANT: This model intentionally has no update or delete
    operations. All events are immutable once created.

    Used for:
    - Policy changes made by patients
    - Every access decision and its evaluated policies
    - Consent request lifecycle and document retrievals
    """

    __tablename__ = "audit_events"

    # Actor information
    actor_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    actor_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,  # Null for system actions
    )

    # Action performed
    action: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    action_category: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,  # e.g., "policy", "access", "access_request"
    )

    # Entity affected
    entity_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    entity_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        index=True,
    )
    # Patient whose data is involved, for per-patient audit queries
    patient_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )

    # Additional context
    event_metadata: Mapped[dict | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )
    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    request_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent {self.action} by {self.actor_type}:{self.actor_id} "
            f"on {self.entity_type}:{self.entity_id}>"
        )
