"""Add audit_events immutability trigger.

Revision ID: 002
Revises: 001
Create Date: 2026-10-01 00:00:01.000000

PostgreSQL only: rejects UPDATE and DELETE on audit_events so the trail
stays append-only at the database level.
"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add immutability trigger to audit_events table."""
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_audit_modification()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'Audit events are append-only (% on event %)', TG_OP, OLD.id;
            RETURN NULL;
        END;
        $$ LANGUAGE plpgsql;
    """)

    op.execute("""
        DROP TRIGGER IF EXISTS audit_immutability_trigger ON audit_events
    """)

    op.execute("""
        CREATE TRIGGER audit_immutability_trigger
        BEFORE UPDATE OR DELETE ON audit_events
        FOR EACH ROW
        EXECUTE FUNCTION prevent_audit_modification()
    """)


def downgrade() -> None:
    """Remove immutability trigger."""
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("""
        DROP TRIGGER IF EXISTS audit_immutability_trigger ON audit_events;
    """)
    op.execute("""
        DROP FUNCTION IF EXISTS prevent_audit_modification();
    """)
