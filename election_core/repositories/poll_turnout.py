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


def poll_key(poll_number: str, riding: str | None, province: str | None) -> tuple[str, str, str]:
    return (str(poll_number), riding or "", province or "")


def turnout_increment_sql(table_name: str) -> str:
    """Upsert that creates the poll row at votes_cast=1 or bumps it atomically."""
    table = _validate_identifier(table_name)
    return f"""
        INSERT INTO {table} (
            account_id, poll_number, riding, province, total_voters, votes_cast, updated_by, last_updated_at
        ) VALUES (%s, %s, %s, %s, 0, 1, %s, now())
        ON CONFLICT (account_id, poll_number, riding, province)
        DO UPDATE SET votes_cast = {table}.votes_cast + 1,
                      updated_by = EXCLUDED.updated_by,
                      last_updated_at = now()
    """


def _loosely_matches(row: dict[str, Any], *, poll_number: str, riding: str | None, province: str | None) -> bool:
    return (
        row.get("poll_number") == poll_number
        and (not riding or row.get("riding") == riding)
        and (not province or row.get("province") == province)
    )


class JsonPollTurnoutRepository:
    def __init__(self, *, files: AccountJsonFiles) -> None:
        self._files = files

    def increment(
        self,
        *,
        account_id: str,
        poll_number: str,
        riding: str | None,
        province: str | None,
        marked_by: str | None,
    ) -> dict[str, Any]:
        key = poll_key(poll_number, riding, province)

        def _apply(rows: list[dict[str, Any]]) -> dict[str, Any]:
            for row in rows:
                if poll_key(row.get("poll_number", ""), row.get("riding"), row.get("province")) == key:
                    row["votes_cast"] = int(row.get("votes_cast") or 0) + 1
                    row["updated_by"] = marked_by
                    row["last_updated_at"] = _utcnow_iso()
                    return dict(row)
            row = {
                "account_id": account_id,
                "poll_number": poll_number,
                "riding": riding or None,
                "province": province or None,
                "total_voters": 0,
                "votes_cast": 1,
                "updated_by": marked_by,
                "last_updated_at": _utcnow_iso(),
            }
            rows.append(row)
            return dict(row)

        return self._files.update(account_id=account_id, entity="poll_turnout", fn=_apply)

    def set_total_voters(
        self,
        *,
        account_id: str,
        poll_number: str,
        riding: str | None,
        province: str | None,
        total_voters: int,
        updated_by: str | None,
    ) -> dict[str, Any]:
        key = poll_key(poll_number, riding, province)

        def _apply(rows: list[dict[str, Any]]) -> dict[str, Any]:
            for row in rows:
                if poll_key(row.get("poll_number", ""), row.get("riding"), row.get("province")) == key:
                    row["total_voters"] = int(total_voters)
                    row["updated_by"] = updated_by
                    row["last_updated_at"] = _utcnow_iso()
                    return dict(row)
            row = {
                "account_id": account_id,
                "poll_number": poll_number,
                "riding": riding or None,
                "province": province or None,
                "total_voters": int(total_voters),
                "votes_cast": 0,
                "updated_by": updated_by,
                "last_updated_at": _utcnow_iso(),
            }
            rows.append(row)
            return dict(row)

        return self._files.update(account_id=account_id, entity="poll_turnout", fn=_apply)

    def list_rows(
        self,
        *,
        account_id: str,
        riding: str | None = None,
        province: str | None = None,
    ) -> list[dict[str, Any]]:
        rows = self._files.read(account_id=account_id, entity="poll_turnout")
        if riding:
            rows = [x for x in rows if x.get("riding") == riding]
        if province:
            rows = [x for x in rows if x.get("province") == province]
        return rows

    def find(
        self,
        *,
        account_id: str,
        poll_number: str,
        riding: str | None = None,
        province: str | None = None,
    ) -> dict[str, Any] | None:
        for row in self._files.read(account_id=account_id, entity="poll_turnout"):
            if _loosely_matches(row, poll_number=poll_number, riding=riding, province=province):
                return row
        return None


def _row_to_turnout(row: tuple[Any, ...] | list[Any]) -> dict[str, Any]:
    updated = row[7]
    return {
        "account_id": row[0],
        "poll_number": row[1],
        "riding": row[2] or None,
        "province": row[3] or None,
        "total_voters": int(row[4] or 0),
        "votes_cast": int(row[5] or 0),
        "updated_by": row[6],
        "last_updated_at": updated.isoformat() if isinstance(updated, datetime) else updated,
    }


class PostgresPollTurnoutRepository:
    """Turnout rows; riding/province are stored as '' so the unique key covers absent values."""

    _COLUMNS = "account_id, poll_number, riding, province, total_voters, votes_cast, updated_by, last_updated_at"

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "election_poll_turnout") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    @property
    def table_name(self) -> str:
        return self._table_name

    def set_total_voters(
        self,
        *,
        account_id: str,
        poll_number: str,
        riding: str | None,
        province: str | None,
        total_voters: int,
        updated_by: str | None,
    ) -> dict[str, Any]:
        sql = f"""
            INSERT INTO {self._table_name} (
                account_id, poll_number, riding, province, total_voters, votes_cast, updated_by, last_updated_at
            ) VALUES (%s, %s, %s, %s, %s, 0, %s, now())
            ON CONFLICT (account_id, poll_number, riding, province)
            DO UPDATE SET total_voters = EXCLUDED.total_voters,
                          updated_by = EXCLUDED.updated_by,
                          last_updated_at = now()
            RETURNING {self._COLUMNS}
        """
        _, riding_key, province_key = poll_key(poll_number, riding, province)

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (account_id, poll_number, riding_key, province_key, int(total_voters), updated_by),
                )
                row = cur.fetchone()
            return _row_to_turnout(row)

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def list_rows(
        self,
        *,
        account_id: str,
        riding: str | None = None,
        province: str | None = None,
    ) -> list[dict[str, Any]]:
        sql = f"SELECT {self._COLUMNS} FROM {self._table_name} WHERE account_id = %s"
        params: list[Any] = [account_id]
        if riding:
            sql += " AND riding = %s"
            params.append(riding)
        if province:
            sql += " AND province = %s"
            params.append(province)
        sql += " ORDER BY poll_number ASC, riding ASC, province ASC"

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
            return [_row_to_turnout(row) for row in rows]

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def find(
        self,
        *,
        account_id: str,
        poll_number: str,
        riding: str | None = None,
        province: str | None = None,
    ) -> dict[str, Any] | None:
        sql = f"SELECT {self._COLUMNS} FROM {self._table_name} WHERE account_id = %s AND poll_number = %s"
        params: list[Any] = [account_id, poll_number]
        if riding:
            sql += " AND riding = %s"
            params.append(riding)
        if province:
            sql += " AND province = %s"
            params.append(province)
        sql += " ORDER BY riding ASC, province ASC LIMIT 1"

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                row = cur.fetchone()
            if row is None:
                return None
            return _row_to_turnout(row)

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)
