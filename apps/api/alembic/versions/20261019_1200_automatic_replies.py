"""Automatic replies + group opening hours

Revision ID: 20261019_1200
Revises: 20261019_1100
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op

revision = "20261019_1200"
down_revision = "20261019_1100"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
DO $$ BEGIN
  CREATE TYPE auto_reply_trigger AS ENUM ('keyword','first_message','outside_hours');
EXCEPTION WHEN duplicate_object THEN NULL; END $$;
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS automatic_replies (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  group_id uuid NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
  name text NOT NULL DEFAULT '',
  trigger_type auto_reply_trigger NOT NULL,
  trigger_pattern text,
  message_template text NOT NULL,
  cooldown_minutes integer NOT NULL DEFAULT 60,
  is_active boolean NOT NULL DEFAULT true,
  created_at timestamptz NOT NULL DEFAULT now(),
  CHECK (cooldown_minutes >= 0)
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_automatic_replies_group_active ON automatic_replies (group_id, is_active);"
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS opening_hours (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  group_id uuid NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
  day_of_week integer NOT NULL,
  is_open boolean NOT NULL DEFAULT true,
  open_time time,
  close_time time,
  CONSTRAINT uq_opening_hours_group_day UNIQUE (group_id, day_of_week),
  CHECK (day_of_week BETWEEN 0 AND 6)
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS opening_hours_exceptions (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  group_id uuid NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
  exception_date date NOT NULL,
  is_open boolean NOT NULL,
  open_time time,
  close_time time,
  description text,
  CONSTRAINT uq_opening_hours_exceptions_group_date UNIQUE (group_id, exception_date)
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS auto_reply_log (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  auto_reply_id uuid NOT NULL REFERENCES automatic_replies(id) ON DELETE CASCADE,
  triggering_message_id uuid NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
  sent_message_id uuid REFERENCES messages(id) ON DELETE SET NULL,
  was_sent boolean NOT NULL,
  reason text NOT NULL,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS auto_reply_log_trigger_idx ON auto_reply_log (triggering_message_id);"
    )

    # Queued outbound messages are picked up by the scheduler in creation order.
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_messages_outbound_queue ON messages (status, created_at) "
        "WHERE direction = 'outbound' AND status = 'queued';"
    )


def downgrade() -> None:
    # No downgrade support (early-stage schema; breaking changes allowed).
    pass
