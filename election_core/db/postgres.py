from __future__ import annotations

from collections.abc import Callable
from typing import Any

from election_core.errors import ImmutableRecordError, duplicate_verification_code

# Raised by the append-only triggers in election_core.db.schema.
IMMUTABLE_SQLSTATE = "23001"
UNIQUE_SQLSTATE = "23505"


def _violated_constraint(exc: Exception) -> str:
    diag = getattr(exc, "diag", None)
    return getattr(diag, "constraint_name", None) or str(exc)


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


class PostgresTxRunner:
    """Run callback logic in one PostgreSQL transaction scoped to an account."""

    def __init__(self, dsn: str) -> None:
        if not dsn.strip():
            raise ValueError("DATABASE_URL must not be empty")
        self._dsn = dsn.strip()

    def run_in_tx(
        self,
        *,
        account_id: str,
        fn: Callable[[Any], Any],
    ) -> Any:
        if not account_id.strip():
            raise ValueError("account_id must not be empty")

        psycopg = _import_psycopg()
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT set_config('app.current_account', %s, true)", (account_id,))
            try:
                result = fn(conn)
            except Exception as exc:
                if getattr(exc, "sqlstate", None) == IMMUTABLE_SQLSTATE:
                    raise ImmutableRecordError(str(exc).strip() or "audit records are append-only") from exc
                if getattr(exc, "sqlstate", None) == UNIQUE_SQLSTATE and "verification_code" in _violated_constraint(exc):
                    raise duplicate_verification_code() from exc
                raise
            conn.commit()
            return result
