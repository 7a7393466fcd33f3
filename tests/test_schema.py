from __future__ import annotations

from election_core.db.schema import AUDIT_TABLES, apply_schema, audit_trigger_statements, schema_statements


def test_audit_triggers_block_update_and_delete():
    statements = audit_trigger_statements("election_vote_marks")
    joined = "\n".join(statements)
    assert "BEFORE UPDATE ON election_vote_marks" in joined
    assert "BEFORE DELETE ON election_vote_marks" in joined
    assert joined.count("prevent_audit_update_delete()") == 2


def test_schema_covers_every_table_and_audit_table():
    joined = "\n".join(schema_statements())
    for table in (
        "contacts",
        "election_interactions",
        "election_vote_marks",
        "election_poll_turnout",
        "election_lists",
        "election_scrutineering_voted",
    ):
        assert f"CREATE TABLE IF NOT EXISTS {table}" in joined
    assert "restrict_violation" in joined
    assert "verification_code TEXT NOT NULL UNIQUE" in joined
    for table in AUDIT_TABLES:
        assert f"CREATE TRIGGER {table}_no_update" in joined


def test_apply_schema_runs_every_statement_in_one_transaction():
    executed: list[str] = []
    calls: list[str] = []

    class FakeCursor:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def execute(self, query: str, params=None):
            executed.append(query)

    class FakeConn:
        def cursor(self):
            return FakeCursor()

    class FakeRunner:
        def run_in_tx(self, *, account_id: str, fn):
            calls.append(account_id)
            return fn(FakeConn())

    applied = apply_schema(FakeRunner())
    assert applied == len(schema_statements())
    assert executed == schema_statements()
    assert calls == ["schema_setup"]
