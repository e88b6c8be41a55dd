"""Access request (patient consent) model."""

from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clinical_access.db.base import Base, TimestampMixin, ensure_aware, utc_now


class AccessRequestStatus(str, Enum):
    """Consent request states. Every state but PENDING is terminal."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    EXPIRED = "EXPIRED"


class UrgencyLevel(str, Enum):
    """How urgently the professional needs the document."""

    ROUTINE = "ROUTINE"
    URGENT = "URGENT"
    EMERGENCY = "EMERGENCY"

    @classmethod
    def parse(cls, value: str | None) -> "UrgencyLevel":
        """Parse case-insensitively; unknown or missing values are ROUTINE."""
        if value:
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.ROUTINE


def pending_key(professional_id: str, patient_id: str, document_id: str | None) -> str:
    """Deduplication key for the (professional, patient, document) triple.

    A general access ask (no document) uses ``*`` in the document slot.
    """
    return f"{professional_id}|{patient_id}|{document_id or '*'}"


class AccessRequest(Base, TimestampMixin):
    """A professional's request to access a patient's documents.

    Created when no policy gives a definitive answer. The row moves from
    PENDING to exactly one terminal state and is never deleted.

    ``pending_key`` is set only while the request is PENDING and is unique,
    so the database refuses a second PENDING row for the same triple.
    """

    __tablename__ = "access_requests"
    __table_args__ = (
        Index("ix_access_requests_patient_status", "patient_id", "status"),
        Index("ix_access_requests_status_expires", "status", "expires_at"),
    )

    # Requester
    professional_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    professional_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    professional_specialties: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )
    clinic_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    clinic_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Subject
    patient_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )
    # Null for a general access ask
    document_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
    )
    document_type: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )
    request_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    urgency: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UrgencyLevel.ROUTINE.value,
    )

    # Workflow
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AccessRequestStatus.PENDING.value,
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    patient_response: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    responded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    pending_key: Mapped[str | None] = mapped_column(
        String(300),
        nullable=True,
        unique=True,
    )

    @classmethod
    def open(
        cls,
        professional_id: str,
        patient_id: str,
        now: datetime,
        expiration_hours: int,
        **fields,
    ) -> "AccessRequest":
        """Build a new PENDING request expiring ``expiration_hours`` after ``now``."""
        document_id = fields.get("document_id")
        return cls(
            professional_id=professional_id,
            patient_id=patient_id,
            status=AccessRequestStatus.PENDING.value,
            requested_at=now,
            expires_at=now + timedelta(hours=expiration_hours),
            pending_key=pending_key(professional_id, patient_id, document_id),
            **fields,
        )

    def is_expired_at(self, now: datetime) -> bool:
        """Check whether the deadline has passed (strictly after expires_at)."""
        return now > ensure_aware(self.expires_at)

    @property
    def is_expired(self) -> bool:
        return self.is_expired_at(utc_now())

    @property
    def is_pending(self) -> bool:
        return self.status == AccessRequestStatus.PENDING.value

    def _resolve(self, status: AccessRequestStatus, now: datetime, response: str | None) -> None:
        if not self.is_pending:
            raise ValueError(f"Cannot change a {self.status} request")
        if self.is_expired_at(now):
            raise ValueError("Cannot change an expired request")
        self.status = status.value
        self.patient_response = response
        self.responded_at = now
        self.pending_key = None

    def approve(self, now: datetime, reason: str | None = None) -> None:
        """Approve the request."""
        self._resolve(AccessRequestStatus.APPROVED, now, reason)

    def deny(self, now: datetime, reason: str) -> None:
        """Deny the request."""
        self._resolve(AccessRequestStatus.DENIED, now, reason)

    def expire(self) -> None:
        """Mark a PENDING request as expired."""
        if not self.is_pending:
            raise ValueError(f"Cannot expire a {self.status} request")
        self.status = AccessRequestStatus.EXPIRED.value
        self.pending_key = None

    def __repr__(self) -> str:
        return (
            f"<AccessRequest {self.status} prof={self.professional_id} "
            f"patient={self.patient_id[:5]}*** doc={self.document_id}>"
        )
