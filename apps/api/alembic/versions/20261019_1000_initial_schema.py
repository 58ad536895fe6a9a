"""Initial schema (tenants, groups, gateways, contacts, threads, messages, campaigns)

Revision ID: 20261019_1000
Revises:
Create Date: 2026-10-19

"""

from __future__ import annotations

from alembic import op

revision = "20261019_1000"
down_revision = None
branch_labels = None
depends_on = None

_ENUMS = {
    "membership_role": ("tenant_admin", "member"),
    "message_direction": ("inbound", "outbound"),
    "message_status": ("received", "queued", "sent", "delivered", "failed", "undelivered"),
    "routing_rule_kind": ("keyword", "prefix", "fallback"),
    "campaign_status": ("draft", "pending", "sending", "completed", "failed"),
    "recipient_status": ("pending", "sent", "replied", "failed"),
}


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")

    for name, values in _ENUMS.items():
        labels = ",".join(f"'{v}'" for v in values)
        op.execute(
            f"""
DO $$ BEGIN
  CREATE TYPE {name} AS ENUM ({labels});
EXCEPTION WHEN duplicate_object THEN NULL; END $$;
"""
        )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS tenants (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  name text NOT NULL,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS users (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  email text NOT NULL,
  display_name text,
  is_disabled boolean NOT NULL DEFAULT false,
  created_at timestamptz NOT NULL DEFAULT now(),
  UNIQUE (email)
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS memberships (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  user_id uuid NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  role membership_role NOT NULL,
  created_at timestamptz NOT NULL DEFAULT now(),
  CONSTRAINT uq_memberships_tenant_user UNIQUE (tenant_id, user_id)
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS memberships_tenant_role_idx ON memberships (tenant_id, role);"
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS groups (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  name text NOT NULL,
  escalation_enabled boolean NOT NULL DEFAULT true,
  escalation_timeout_minutes integer NOT NULL DEFAULT 30 CHECK (escalation_timeout_minutes > 0),
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS group_memberships (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  group_id uuid NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
  user_id uuid NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  created_at timestamptz NOT NULL DEFAULT now(),
  CONSTRAINT uq_group_memberships_group_user UNIQUE (group_id, user_id)
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS gateways (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  name text NOT NULL,
  phone_number text NOT NULL,
  fallback_group_id uuid REFERENCES groups(id) ON DELETE SET NULL,
  is_active boolean NOT NULL DEFAULT true,
  api_endpoint text,
  api_key text,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS contacts (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  phone_number text NOT NULL,
  display_name text,
  default_group_id uuid REFERENCES groups(id) ON DELETE SET NULL,
  created_at timestamptz NOT NULL DEFAULT now(),
  CONSTRAINT uq_contacts_tenant_phone UNIQUE (tenant_id, phone_number)
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS routing_rules (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  gateway_id uuid REFERENCES gateways(id) ON DELETE CASCADE,
  name text NOT NULL DEFAULT '',
  kind routing_rule_kind NOT NULL,
  pattern text,
  target_group_id uuid NOT NULL REFERENCES groups(id) ON DELETE CASCADE,
  priority integer NOT NULL DEFAULT 100,
  is_active boolean NOT NULL DEFAULT true,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_routing_rules_tenant_priority ON routing_rules (tenant_id, priority);"
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS threads (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  contact_id uuid NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
  gateway_id uuid NOT NULL REFERENCES gateways(id) ON DELETE CASCADE,
  resolved_group_id uuid NOT NULL REFERENCES groups(id) ON DELETE RESTRICT,
  is_resolved boolean NOT NULL DEFAULT false,
  resolved_at timestamptz,
  last_message_at timestamptz,
  created_at timestamptz NOT NULL DEFAULT now(),
  updated_at timestamptz NOT NULL DEFAULT now()
);
"""
    )
    # Concurrent first-contact inserts collide here; the loser re-reads the winner.
    op.execute(
        """
CREATE UNIQUE INDEX IF NOT EXISTS uq_threads_open_contact_gateway
  ON threads (tenant_id, gateway_id, contact_id)
  WHERE NOT is_resolved;
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS bulk_campaigns (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  created_by_user_id uuid REFERENCES users(id) ON DELETE SET NULL,
  name text NOT NULL,
  message_template text NOT NULL,
  source_group_id uuid NOT NULL REFERENCES groups(id) ON DELETE RESTRICT,
  gateway_id uuid REFERENCES gateways(id) ON DELETE SET NULL,
  status campaign_status NOT NULL DEFAULT 'draft',
  total_recipients integer NOT NULL DEFAULT 0,
  sent_count integer NOT NULL DEFAULT 0,
  failed_count integer NOT NULL DEFAULT 0,
  started_at timestamptz,
  completed_at timestamptz,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS messages (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  thread_id uuid NOT NULL REFERENCES threads(id) ON DELETE CASCADE,
  gateway_id uuid NOT NULL REFERENCES gateways(id) ON DELETE CASCADE,
  direction message_direction NOT NULL,
  from_number text NOT NULL,
  to_number text NOT NULL,
  content text NOT NULL,
  media_urls jsonb,
  resolved_group_id uuid REFERENCES groups(id) ON DELETE SET NULL,
  campaign_id uuid REFERENCES bulk_campaigns(id) ON DELETE SET NULL,
  parent_message_id uuid REFERENCES messages(id) ON DELETE SET NULL,
  is_fallback boolean NOT NULL DEFAULT false,
  status message_status NOT NULL,
  external_message_id text,
  error_message text,
  sent_at timestamptz,
  delivered_at timestamptz,
  acknowledged_at timestamptz,
  acknowledged_by_user_id uuid REFERENCES users(id) ON DELETE SET NULL,
  escalation_level integer NOT NULL DEFAULT 0 CHECK (escalation_level BETWEEN 0 AND 2),
  escalated_at timestamptz,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_messages_thread_created ON messages (thread_id, created_at);"
    )
    op.execute(
        """
CREATE INDEX IF NOT EXISTS ix_messages_gateway_to_number
  ON messages (tenant_id, gateway_id, to_number, direction);
"""
    )
    op.execute(
        """
CREATE INDEX IF NOT EXISTS ix_messages_escalation_queue
  ON messages (resolved_group_id, escalation_level, created_at);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_messages_external_id ON messages (external_message_id);"
    )
    op.execute(
        """
CREATE UNIQUE INDEX IF NOT EXISTS uq_messages_inbound_external_id
  ON messages (gateway_id, external_message_id)
  WHERE direction = 'inbound' AND external_message_id IS NOT NULL;
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS bulk_recipients (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  campaign_id uuid NOT NULL REFERENCES bulk_campaigns(id) ON DELETE CASCADE,
  position integer NOT NULL DEFAULT 0,
  phone_number text NOT NULL,
  metadata jsonb NOT NULL DEFAULT '{}'::jsonb,
  status recipient_status NOT NULL DEFAULT 'pending',
  sent_message_id uuid REFERENCES messages(id) ON DELETE SET NULL,
  sent_at timestamptz,
  replied_at timestamptz,
  response_message_id uuid REFERENCES messages(id) ON DELETE SET NULL,
  error_message text
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_bulk_recipients_campaign_position ON bulk_recipients (campaign_id, position);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_bulk_recipients_campaign_phone ON bulk_recipients (campaign_id, phone_number);"
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS delivery_status_events (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  message_id uuid NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
  status message_status NOT NULL,
  external_message_id text,
  error_code text,
  error_message text,
  raw_payload jsonb NOT NULL DEFAULT '{}'::jsonb,
  event_at timestamptz NOT NULL DEFAULT now(),
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS escalation_events (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  message_id uuid NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
  escalation_level integer NOT NULL,
  target_group_id uuid REFERENCES groups(id) ON DELETE SET NULL,
  target_user_ids jsonb NOT NULL DEFAULT '[]'::jsonb,
  reason text NOT NULL,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS escalation_events_message_idx ON escalation_events (message_id, escalation_level);"
    )


def downgrade() -> None:
    # No downgrade support (early-stage schema; breaking changes allowed).
    pass
