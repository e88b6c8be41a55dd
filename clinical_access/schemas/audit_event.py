"""Audit event schemas."""

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from clinical_access.schemas.common import CamelModel


class AuditEventRead(CamelModel):
    """Schema for reading audit event data."""

    id: str
    actor_type: str
    actor_id: Optional[str]
    action: str
    action_category: Optional[str]
    entity_type: str
    entity_id: Optional[str]
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="event_metadata")
    description: Optional[str]
    created_at: datetime


class AccessHistoryResponse(CamelModel):
    events: list[AuditEventRead]
    total: int
    page: int
    size: int
    total_pages: int
