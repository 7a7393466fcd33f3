from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

from election_core.db.postgres import PostgresTxRunner
from election_core.repositories.json_files import AccountJsonFiles


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


class JsonVotedTallyRepository:
    """Mutable per-contact voted flags in scrutineering-voted.json."""

    def __init__(self, *, files: AccountJsonFiles) -> None:
        self._files = files

    def set_voted(self, *, account_id: str, contact_id: str, marked_by: str | None) -> dict[str, Any]:
        def _apply(rows: list[dict[str, Any]]) -> dict[str, Any]:
            for row in rows:
                if row.get("contact_id") == contact_id:
                    row["voted_at"] = _utcnow_iso()
                    row["marked_by"] = marked_by
                    return dict(row)
            entry = {
                "account_id": account_id,
                "contact_id": contact_id,
                "voted_at": _utcnow_iso(),
                "marked_by": marked_by,
            }
            rows.append(entry)
            return dict(entry)

        return self._files.update(account_id=account_id, entity="voted", fn=_apply)

    def unset_voted(self, *, account_id: str, contact_id: str) -> bool:
        def _apply(rows: list[dict[str, Any]]) -> bool:
            kept = [x for x in rows if x.get("contact_id") != contact_id]
            removed = len(kept) != len(rows)
            rows[:] = kept
            return removed

        return self._files.update(account_id=account_id, entity="voted", fn=_apply)

    def clear_all(self, *, account_id: str) -> int:
        def _apply(rows: list[dict[str, Any]]) -> int:
            count = len(rows)
            rows.clear()
            return count

        return self._files.update(account_id=account_id, entity="voted", fn=_apply)

    def is_voted(self, *, account_id: str, contact_id: str) -> bool:
        return any(x.get("contact_id") == contact_id for x in self._files.read(account_id=account_id, entity="voted"))

    def contact_ids(self, *, account_id: str) -> list[str]:
        return [str(x.get("contact_id")) for x in self._files.read(account_id=account_id, entity="voted")]


class PostgresVotedTallyRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "election_scrutineering_voted") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    def set_voted(self, *, account_id: str, contact_id: str, marked_by: str | None) -> dict[str, Any]:
        sql = f"""
            INSERT INTO {self._table_name} (account_id, contact_id, voted_at, marked_by)
            VALUES (%s, %s, now(), %s)
            ON CONFLICT (account_id, contact_id)
            DO UPDATE SET voted_at = now(), marked_by = EXCLUDED.marked_by
            RETURNING account_id, contact_id, voted_at, marked_by
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, (account_id, contact_id, marked_by))
                row = cur.fetchone()
            voted_at = row[2]
            return {
                "account_id": row[0],
                "contact_id": row[1],
                "voted_at": voted_at.isoformat() if isinstance(voted_at, datetime) else voted_at,
                "marked_by": row[3],
            }

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def unset_voted(self, *, account_id: str, contact_id: str) -> bool:
        sql = f"DELETE FROM {self._table_name} WHERE account_id = %s AND contact_id = %s"

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (account_id, contact_id))
                return cur.rowcount > 0

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def clear_all(self, *, account_id: str) -> int:
        sql = f"DELETE FROM {self._table_name} WHERE account_id = %s"

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, (account_id,))
                return int(cur.rowcount)

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def is_voted(self, *, account_id: str, contact_id: str) -> bool:
        sql = f"SELECT 1 FROM {self._table_name} WHERE account_id = %s AND contact_id = %s LIMIT 1"

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (account_id, contact_id))
                return cur.fetchone() is not None

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def contact_ids(self, *, account_id: str) -> list[str]:
        sql = f"SELECT contact_id FROM {self._table_name} WHERE account_id = %s ORDER BY voted_at ASC, contact_id ASC"

        def _op(conn: Any) -> list[str]:
            with conn.cursor() as cur:
                cur.execute(sql, (account_id,))
                rows = cur.fetchall()
            return [str(row[0]) for row in rows]

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)
