"""Append-only audit trail for policy changes, decisions and consent actions."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from clinical_access.core.logging import audit_logger, mask_ci
from clinical_access.db.base import utc_now
from clinical_access.models.audit_event import ActorType, AuditEvent


async def write_audit_event(
    session: AsyncSession,
    actor_type: ActorType,
    actor_id: str | None,
    action: str,
    entity_type: str,
    entity_id: str | None,
    metadata: dict[str, Any] | None = None,
    action_category: str | None = None,
    description: str | None = None,
    patient_id: str | None = None,
    request_id: str | None = None,
    level: int = logging.INFO,
) -> AuditEvent:
    """Write an audit event to the database.

    This is the primary function for recording audit events.
    Events are append-only and cannot be modified or deleted.

    Args:
        session: Database session
        actor_type: Type of actor (system, patient, professional, clinic)
        actor_id: Patient CI, professional id or clinic id
        action: Action performed (e.g., "policy.created", "access.evaluated")
        entity_type: Type of entity affected (e.g., "access_policy")
        entity_id: ID of the affected entity
        metadata: Additional context as JSON
        action_category: Category of action (policy, access, access_request)
        description: Human-readable description
        patient_id: Patient whose data is involved
        request_id: Request correlation ID
        level: Level used for the mirrored log line

    Returns:
        Created AuditEvent instance
    """
    event = AuditEvent(
        actor_type=actor_type.value,
        actor_id=actor_id,
        action=action,
        action_category=action_category,
        entity_type=entity_type,
        entity_id=entity_id,
        patient_id=patient_id,
        event_metadata=metadata,
        description=description,
        request_id=request_id,
    )

    session.add(event)
    await session.commit()
    await session.refresh(event)

    # Also log to structured logger
    audit_logger.log(
        action=action,
        actor_type=actor_type.value,
        actor_id=actor_id or "system",
        entity_type=entity_type,
        entity_id=entity_id or "none",
        metadata={**(metadata or {}), "patient": mask_ci(patient_id)} if patient_id else metadata,
        level=level,
    )

    return event


class AuditTrail(ABC):
    """Destination for audit events used by the services."""

    @abstractmethod
    async def record(
        self,
        actor_type: ActorType,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any] | None = None,
        action_category: str | None = None,
        description: str | None = None,
        patient_id: str | None = None,
        level: int = logging.INFO,
    ) -> None:
        pass


class DatabaseAuditTrail(AuditTrail):
    """Audit trail persisted in ``audit_events``."""

    def __init__(self, session: AsyncSession, request_id: str | None = None) -> None:
        self.session = session
        self.request_id = request_id

    async def record(
        self,
        actor_type: ActorType,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any] | None = None,
        action_category: str | None = None,
        description: str | None = None,
        patient_id: str | None = None,
        level: int = logging.INFO,
    ) -> None:
        await write_audit_event(
            self.session,
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata,
            action_category=action_category,
            description=description,
            patient_id=patient_id,
            request_id=self.request_id,
            level=level,
        )


@dataclass
class RecordedEvent:
    actor_type: ActorType
    actor_id: str | None
    action: str
    entity_type: str
    entity_id: str | None
    metadata: dict[str, Any] | None
    patient_id: str | None
    recorded_at: datetime = field(default_factory=utc_now)


class InMemoryAuditTrail(AuditTrail):
    """Audit trail kept in a list; still mirrored to the audit logger."""

    def __init__(self) -> None:
        self.events: list[RecordedEvent] = []

    async def record(
        self,
        actor_type: ActorType,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any] | None = None,
        action_category: str | None = None,
        description: str | None = None,
        patient_id: str | None = None,
        level: int = logging.INFO,
    ) -> None:
        self.events.append(
            RecordedEvent(
                actor_type=actor_type,
                actor_id=actor_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                patient_id=patient_id,
            )
        )
        audit_logger.log(
            action=action,
            actor_type=actor_type.value,
            actor_id=actor_id or "system",
            entity_type=entity_type,
            entity_id=entity_id or "none",
            metadata=metadata,
            level=level,
        )

    def actions(self) -> list[str]:
        return [e.action for e in self.events]


class AuditService:
    """Read side of the audit trail.

    Note: This service only provides read operations.
    Audit events are created via write_audit_event() function.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_patient_history(
        self,
        patient_id: str,
        action_category: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[AuditEvent], int]:
        """Audit events touching a patient's data, newest first.

        Args:
            patient_id: Patient CI
            action_category: Optional category filter
            offset: Rows to skip
            limit: Maximum events to return

        Returns:
            Tuple of (events, total matching)
        """
        query = select(AuditEvent).where(AuditEvent.patient_id == patient_id)
        if action_category:
            query = query.where(AuditEvent.action_category == action_category)

        count_result = await self.session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar() or 0

        result = await self.session.execute(
            query.order_by(AuditEvent.created_at.desc()).offset(offset).limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_entity_history(
        self,
        entity_type: str,
        entity_id: str,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get audit history for a specific entity."""
        result = await self.session.execute(
            select(AuditEvent)
            .where(AuditEvent.entity_type == entity_type)
            .where(AuditEvent.entity_id == entity_id)
            .order_by(AuditEvent.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
