"""Lifecycle schema: events, tickets and the audit ledger."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("organizer_id", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("starts_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("ends_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("previous_status", sa.Text(), nullable=True),
        sa.Column("transitioned_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("payout_wallet", sa.Text(), nullable=True),
        sa.Column("stake_amount", sa.Numeric(), nullable=True),
        sa.Column("stake_currency", sa.Text(), nullable=True),
        sa.Column("settlement_network", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_events_status_starts_at", "events", ["status", "starts_at"])
    op.create_index("idx_events_status_ends_at", "events", ["status", "ends_at"])

    op.create_table(
        "tickets",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("event_id", sa.Text(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("holder_id", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("previous_status", sa.Text(), nullable=True),
        sa.Column("transitioned_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_tickets_event_status", "tickets", ["event_id", "status"])

    op.create_table(
        "audit_envelopes",
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("entity_type", sa.Text(), nullable=False),
        sa.Column("entity_id", sa.Text(), nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("actor_type", sa.Text(), nullable=False),
        sa.Column("actor_id", sa.Text(), nullable=True),
        sa.Column("correlation_id", sa.Text(), nullable=False),
        sa.Column("causation_id", sa.Text(), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_audit_envelopes_entity", "audit_envelopes", ["entity_type", "entity_id", "created_at"]
    )
    op.create_index("idx_audit_envelopes_correlation", "audit_envelopes", ["correlation_id", "created_at"])
    op.create_index("idx_audit_envelopes_event_type", "audit_envelopes", ["event_type", "created_at", "id"])
    op.create_index(
        "uq_audit_envelopes_stake_tx",
        "audit_envelopes",
        [sa.text("(payload->>'txHash')")],
        unique=True,
        postgresql_where=sa.text("event_type = 'TICKET_STAKED'"),
    )


def downgrade() -> None:
    op.drop_index("uq_audit_envelopes_stake_tx", table_name="audit_envelopes")
    op.drop_index("idx_audit_envelopes_event_type", table_name="audit_envelopes")
    op.drop_index("idx_audit_envelopes_correlation", table_name="audit_envelopes")
    op.drop_index("idx_audit_envelopes_entity", table_name="audit_envelopes")
    op.drop_table("audit_envelopes")
    op.drop_index("idx_tickets_event_status", table_name="tickets")
    op.drop_table("tickets")
    op.drop_index("idx_events_status_ends_at", table_name="events")
    op.drop_index("idx_events_status_starts_at", table_name="events")
    op.drop_table("events")
