from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

AUDIT_TABLES: tuple[str, ...] = ("election_interactions", "election_vote_marks")

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS contacts (
      id TEXT NOT NULL,
      account_id TEXT NOT NULL,
      first_name TEXT,
      last_name TEXT,
      name TEXT,
      email TEXT,
      phone TEXT,
      address TEXT,
      city TEXT,
      province TEXT,
      postal_code TEXT,
      poll_number TEXT,
      riding TEXT,
      role TEXT,
      category TEXT,
      categories JSONB NOT NULL DEFAULT '[]'::jsonb,
      custom_fields JSONB NOT NULL DEFAULT '{}'::jsonb,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      deleted_at TIMESTAMPTZ,
      PRIMARY KEY (account_id, id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS election_interactions (
      id BIGSERIAL PRIMARY KEY,
      account_id TEXT NOT NULL,
      contact_id TEXT NOT NULL,
      user_id TEXT,
      interaction_type TEXT NOT NULL,
      interaction_method TEXT NOT NULL,
      support_likelihood INTEGER CHECK (support_likelihood >= 0 AND support_likelihood <= 100),
      notes TEXT,
      metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      created_by TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS election_vote_marks (
      id TEXT PRIMARY KEY,
      account_id TEXT NOT NULL,
      contact_id TEXT NOT NULL,
      poll_number TEXT NOT NULL,
      riding TEXT,
      province TEXT,
      marked_by TEXT,
      verification_code TEXT NOT NULL UNIQUE,
      notes TEXT,
      metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
      marked_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS election_poll_turnout (
      account_id TEXT NOT NULL,
      poll_number TEXT NOT NULL,
      riding TEXT NOT NULL DEFAULT '',
      province TEXT NOT NULL DEFAULT '',
      total_voters INTEGER NOT NULL DEFAULT 0,
      votes_cast INTEGER NOT NULL DEFAULT 0,
      updated_by TEXT,
      last_updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      UNIQUE (account_id, poll_number, riding, province)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS election_lists (
      id TEXT PRIMARY KEY,
      account_id TEXT NOT NULL,
      user_id TEXT,
      name TEXT NOT NULL,
      description TEXT,
      filter_config JSONB NOT NULL DEFAULT '{}'::jsonb,
      contact_count INTEGER NOT NULL DEFAULT 0,
      is_shared BOOLEAN NOT NULL DEFAULT FALSE,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      deleted_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS election_scrutineering_voted (
      account_id TEXT NOT NULL,
      contact_id TEXT NOT NULL,
      voted_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      marked_by TEXT,
      UNIQUE (account_id, contact_id)
    )
    """,
    """
    CREATE OR REPLACE FUNCTION prevent_audit_update_delete()
    RETURNS TRIGGER AS $$
    BEGIN
      RAISE EXCEPTION '% is append-only: % is not allowed', TG_TABLE_NAME, TG_OP
        USING ERRCODE = 'restrict_violation';
    END;
    $$ LANGUAGE plpgsql
    """,
    "CREATE INDEX IF NOT EXISTS idx_contacts_account ON contacts(account_id)",
    "CREATE INDEX IF NOT EXISTS idx_election_interactions_contact ON election_interactions(account_id, contact_id)",
    "CREATE INDEX IF NOT EXISTS idx_election_interactions_created_at ON election_interactions(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_election_vote_marks_poll ON election_vote_marks(account_id, poll_number, riding, province)",
    "CREATE INDEX IF NOT EXISTS idx_election_vote_marks_contact ON election_vote_marks(account_id, contact_id)",
    "CREATE INDEX IF NOT EXISTS idx_election_lists_account ON election_lists(account_id)",
)


def audit_trigger_statements(table: str) -> list[str]:
    return [
        f"DROP TRIGGER IF EXISTS {table}_no_update ON {table}",
        f"""
        CREATE TRIGGER {table}_no_update
          BEFORE UPDATE ON {table}
          FOR EACH ROW EXECUTE FUNCTION prevent_audit_update_delete()
        """,
        f"DROP TRIGGER IF EXISTS {table}_no_delete ON {table}",
        f"""
        CREATE TRIGGER {table}_no_delete
          BEFORE DELETE ON {table}
          FOR EACH ROW EXECUTE FUNCTION prevent_audit_update_delete()
        """,
    ]


def schema_statements() -> list[str]:
    statements = list(SCHEMA_STATEMENTS)
    for table in AUDIT_TABLES:
        statements.extend(audit_trigger_statements(table))
    return statements


def apply_schema(tx_runner: Any, *, account_id: str = "schema_setup") -> int:
    """Create tables, indexes and append-only triggers. Returns statement count."""
    statements = schema_statements()

    def _op(conn: Any) -> int:
        with conn.cursor() as cur:
            for statement in statements:
                cur.execute(statement)
        return len(statements)

    applied = tx_runner.run_in_tx(account_id=account_id, fn=_op)
    logger.info("election_schema_applied statements=%s", applied)
    return applied
