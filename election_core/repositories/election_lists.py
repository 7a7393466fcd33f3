from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from typing import Any

from election_core.db.postgres import PostgresTxRunner
from election_core.repositories.json_files import AccountJsonFiles

_COLUMNS = (
    "id, account_id, user_id, name, description, filter_config, is_shared, "
    "contact_count, created_at, updated_at, deleted_at"
)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def _iso(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _newest_first(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(rows, key=lambda x: (str(x.get("created_at") or ""), str(x.get("id") or "")), reverse=True)


class JsonElectionListsRepository:
    def __init__(self, *, files: AccountJsonFiles) -> None:
        self._files = files

    def upsert(self, *, account_id: str, record: dict[str, Any]) -> dict[str, Any] | None:
        def _apply(rows: list[dict[str, Any]]) -> dict[str, Any]:
            now = _utcnow_iso()
            for index, row in enumerate(rows):
                if row.get("id") == record["id"]:
                    updated = dict(record)
                    updated["user_id"] = row.get("user_id", record.get("user_id"))
                    updated["created_at"] = row.get("created_at") or now
                    updated["updated_at"] = now
                    updated["deleted_at"] = None
                    rows[index] = updated
                    return dict(updated)
            created = dict(record)
            created["created_at"] = now
            created["updated_at"] = now
            created["deleted_at"] = None
            rows.append(created)
            return dict(created)

        return self._files.update(account_id=account_id, entity="election_lists", fn=_apply)

    def get(self, *, account_id: str, list_id: str) -> dict[str, Any] | None:
        for row in self._files.read(account_id=account_id, entity="election_lists"):
            if row.get("id") == list_id and not row.get("deleted_at"):
                return row
        return None

    def list_visible(self, *, account_id: str, user_id: str | None) -> list[dict[str, Any]]:
        rows = [x for x in self._files.read(account_id=account_id, entity="election_lists") if not x.get("deleted_at")]
        if user_id:
            rows = [x for x in rows if x.get("user_id") == user_id or x.get("is_shared") is True]
        else:
            rows = [x for x in rows if x.get("is_shared") is True]
        return _newest_first(rows)

    def soft_delete(self, *, account_id: str, list_id: str) -> bool:
        def _apply(rows: list[dict[str, Any]]) -> bool:
            for row in rows:
                if row.get("id") == list_id and not row.get("deleted_at"):
                    row["deleted_at"] = _utcnow_iso()
                    return True
            return False

        return self._files.update(account_id=account_id, entity="election_lists", fn=_apply)

    def set_contact_count(self, *, account_id: str, list_id: str, contact_count: int) -> dict[str, Any] | None:
        def _apply(rows: list[dict[str, Any]]) -> dict[str, Any] | None:
            for row in rows:
                if row.get("id") == list_id and not row.get("deleted_at"):
                    row["contact_count"] = int(contact_count)
                    row["updated_at"] = _utcnow_iso()
                    return dict(row)
            return None

        return self._files.update(account_id=account_id, entity="election_lists", fn=_apply)


def _row_to_list(row: tuple[Any, ...] | list[Any]) -> dict[str, Any]:
    return {
        "id": row[0],
        "account_id": row[1],
        "user_id": row[2],
        "name": row[3],
        "description": row[4],
        "filter_config": row[5] if isinstance(row[5], dict) else {},
        "is_shared": bool(row[6]),
        "contact_count": int(row[7] or 0),
        "created_at": _iso(row[8]),
        "updated_at": _iso(row[9]),
        "deleted_at": _iso(row[10]),
    }


class PostgresElectionListsRepository:
    """Saved segments; every statement is scoped by account_id."""

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "election_lists") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    def upsert(self, *, account_id: str, record: dict[str, Any]) -> dict[str, Any] | None:
        """Returns None when the id already belongs to another account."""
        sql = f"""
            INSERT INTO {self._table_name} (
                id, account_id, user_id, name, description, filter_config, is_shared, contact_count,
                created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s, %s, now(), now())
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                description = EXCLUDED.description,
                filter_config = EXCLUDED.filter_config,
                is_shared = EXCLUDED.is_shared,
                contact_count = EXCLUDED.contact_count,
                updated_at = now(),
                deleted_at = NULL
            WHERE {self._table_name}.account_id = EXCLUDED.account_id
            RETURNING {_COLUMNS}
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        record["id"],
                        account_id,
                        record.get("user_id"),
                        record["name"],
                        record.get("description"),
                        json.dumps(record.get("filter_config") or {}, ensure_ascii=True, sort_keys=True),
                        bool(record.get("is_shared", False)),
                        int(record.get("contact_count", 0)),
                    ),
                )
                row = cur.fetchone()
            if row is None:
                return None
            return _row_to_list(row)

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def get(self, *, account_id: str, list_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT {_COLUMNS}
            FROM {self._table_name}
            WHERE account_id = %s AND id = %s AND deleted_at IS NULL
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (account_id, list_id))
                row = cur.fetchone()
            if row is None:
                return None
            return _row_to_list(row)

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def list_visible(self, *, account_id: str, user_id: str | None) -> list[dict[str, Any]]:
        sql = f"SELECT {_COLUMNS} FROM {self._table_name} WHERE account_id = %s AND deleted_at IS NULL"
        params: list[Any] = [account_id]
        if user_id:
            sql += " AND (user_id = %s OR is_shared = TRUE)"
            params.append(user_id)
        else:
            sql += " AND is_shared = TRUE"
        sql += " ORDER BY created_at DESC, id DESC"

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
            return [_row_to_list(row) for row in rows]

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def soft_delete(self, *, account_id: str, list_id: str) -> bool:
        sql = f"""
            UPDATE {self._table_name}
            SET deleted_at = now()
            WHERE account_id = %s AND id = %s AND deleted_at IS NULL
        """

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (account_id, list_id))
                return cur.rowcount > 0

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def set_contact_count(self, *, account_id: str, list_id: str, contact_count: int) -> dict[str, Any] | None:
        sql = f"""
            UPDATE {self._table_name}
            SET contact_count = %s, updated_at = now()
            WHERE account_id = %s AND id = %s AND deleted_at IS NULL
            RETURNING {_COLUMNS}
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (int(contact_count), account_id, list_id))
                row = cur.fetchone()
            if row is None:
                return None
            return _row_to_list(row)

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)
