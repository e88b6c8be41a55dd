"""Access policies, access requests and audit events.

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the access control schema."""

    # Patient-owned policies
    op.create_table(
        "access_policies",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("patient_id", sa.String(64), nullable=False),
        sa.Column("policy_type", sa.String(50), nullable=False),
        sa.Column("policy_config", sa.JSON(), nullable=False),
        sa.Column("effect", sa.String(10), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("document_id", sa.String(128), nullable=True),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_access_policies"),
    )
    op.create_index("ix_access_policies_patient_id", "access_policies", ["patient_id"])
    op.create_index(
        "ix_access_policies_patient_type", "access_policies", ["patient_id", "policy_type"]
    )

    # Consent requests; pending_key is only set while PENDING
    op.create_table(
        "access_requests",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("professional_id", sa.String(64), nullable=False),
        sa.Column("professional_name", sa.String(255), nullable=True),
        sa.Column("professional_specialties", sa.JSON(), nullable=False),
        sa.Column("clinic_id", sa.String(64), nullable=True),
        sa.Column("clinic_name", sa.String(255), nullable=True),
        sa.Column("patient_id", sa.String(64), nullable=False),
        sa.Column("document_id", sa.String(128), nullable=True),
        sa.Column("document_type", sa.String(50), nullable=True),
        sa.Column("request_reason", sa.Text(), nullable=True),
        sa.Column("urgency", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("patient_response", sa.Text(), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pending_key", sa.String(300), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_access_requests"),
        sa.UniqueConstraint("pending_key", name="uq_access_requests_pending_key"),
    )
    op.create_index(
        "ix_access_requests_professional_id", "access_requests", ["professional_id"]
    )
    op.create_index("ix_access_requests_patient_id", "access_requests", ["patient_id"])
    op.create_index(
        "ix_access_requests_patient_status", "access_requests", ["patient_id", "status"]
    )
    op.create_index(
        "ix_access_requests_status_expires", "access_requests", ["status", "expires_at"]
    )

    # Audit trail
    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("actor_type", sa.String(50), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("action_category", sa.String(50), nullable=True),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("patient_id", sa.String(64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_audit_events"),
    )
    op.create_index("ix_audit_events_action", "audit_events", ["action"])
    op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])
    op.create_index("ix_audit_events_patient_id", "audit_events", ["patient_id"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("audit_events")
    op.drop_table("access_requests")
    op.drop_table("access_policies")
