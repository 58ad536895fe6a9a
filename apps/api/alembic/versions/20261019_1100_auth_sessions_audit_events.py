"""Auth sessions + audit events + updated_at trigger

Revision ID: 20261019_1100
Revises: 20261019_1000
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op

revision = "20261019_1100"
down_revision = "20261019_1000"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
CREATE TABLE IF NOT EXISTS auth_sessions (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  user_id uuid NOT NULL REFERENCES users(id) ON DELETE CASCADE,
  active_tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  token_hash bytea NOT NULL,

  created_at timestamptz NOT NULL DEFAULT now(),
  expires_at timestamptz NOT NULL,

  revoked_at timestamptz,
  revoked_reason text,

  UNIQUE (token_hash)
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS auth_sessions_user_idx ON auth_sessions (user_id, revoked_at, expires_at);"
    )

    op.execute(
        """
CREATE TABLE IF NOT EXISTS audit_events (
  id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
  tenant_id uuid NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
  actor_user_id uuid REFERENCES users(id) ON DELETE SET NULL,
  event_type text NOT NULL,
  entity_type text,
  entity_id uuid,
  event_data jsonb NOT NULL DEFAULT '{}'::jsonb,
  created_at timestamptz NOT NULL DEFAULT now()
);
"""
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS audit_events_tenant_created_idx ON audit_events (tenant_id, created_at DESC);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS audit_events_entity_idx ON audit_events (entity_type, entity_id);"
    )

    # Keep updated_at consistent even for raw SQL updates.
    op.execute(
        """
CREATE OR REPLACE FUNCTION set_updated_at() RETURNS trigger AS $$
BEGIN
  NEW.updated_at = now();
  RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""
    )
    op.execute(
        """
DO $$
BEGIN
  IF NOT EXISTS (
    SELECT 1 FROM pg_trigger WHERE tgname = 'set_updated_at_threads'
  ) THEN
    CREATE TRIGGER set_updated_at_threads
    BEFORE UPDATE ON threads
    FOR EACH ROW
    EXECUTE FUNCTION set_updated_at();
  END IF;
END $$;
"""
    )


def downgrade() -> None:
    # No downgrade support (early-stage schema; breaking changes allowed).
    pass
