from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any

from election_core.db.postgres import PostgresTxRunner

_SCORE_SQL = "FLOOR(AVG(support_likelihood) + 0.5)::int"

_COLUMNS = (
    "id, account_id, contact_id, user_id, interaction_type, interaction_method, "
    "support_likelihood, notes, metadata, created_at, created_by"
)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _iso(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _as_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def _row_to_interaction(row: tuple[Any, ...] | list[Any]) -> dict[str, Any]:
    return {
        "id": row[0],
        "account_id": row[1],
        "contact_id": row[2],
        "user_id": row[3],
        "interaction_type": row[4],
        "interaction_method": row[5],
        "support_likelihood": _as_int(row[6]),
        "notes": row[7],
        "metadata": row[8] if isinstance(row[8], dict) else {},
        "created_at": _iso(row[9]),
        "created_by": row[10],
    }


class PostgresInteractionsRepository:
    """Append-only interaction log; the table triggers reject UPDATE and DELETE."""

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "election_interactions") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    def append(self, *, account_id: str, interaction: dict[str, Any]) -> dict[str, Any]:
        sql = f"""
            INSERT INTO {self._table_name} (
                account_id, contact_id, user_id, interaction_type, interaction_method,
                support_likelihood, notes, metadata, created_by
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s)
            RETURNING {_COLUMNS}
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        account_id,
                        interaction["contact_id"],
                        interaction.get("user_id"),
                        interaction["interaction_type"],
                        interaction["interaction_method"],
                        interaction.get("support_likelihood"),
                        interaction.get("notes"),
                        json.dumps(interaction.get("metadata") or {}, ensure_ascii=True, sort_keys=True),
                        interaction.get("user_id"),
                    ),
                )
                row = cur.fetchone()
            return _row_to_interaction(row)

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def list_for_contact(
        self,
        *,
        account_id: str,
        contact_id: str,
        interaction_type: str | None = None,
        interaction_method: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        sql = f"SELECT {_COLUMNS} FROM {self._table_name} WHERE account_id = %s AND contact_id = %s"
        params: list[Any] = [account_id, contact_id]
        if interaction_type:
            sql += " AND interaction_type = %s"
            params.append(interaction_type)
        if interaction_method:
            sql += " AND interaction_method = %s"
            params.append(interaction_method)
        if start_date is not None:
            sql += " AND created_at >= %s"
            params.append(start_date)
        if end_date is not None:
            sql += " AND created_at <= %s"
            params.append(end_date)
        sql += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(int(limit))

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
            return [_row_to_interaction(row) for row in rows]

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def score_stats(self, *, account_id: str, contact_id: str) -> dict[str, Any]:
        """Aggregates over the contact's scored interactions only."""
        sql = f"""
            SELECT {_SCORE_SQL}, COUNT(*), MAX(created_at), MAX(support_likelihood), MIN(support_likelihood)
            FROM {self._table_name}
            WHERE account_id = %s AND contact_id = %s AND support_likelihood IS NOT NULL
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, (account_id, contact_id))
                row = cur.fetchone()
            if row is None:
                return {
                    "average_score": None,
                    "interaction_count": 0,
                    "last_interaction_at": None,
                    "highest_score": None,
                    "lowest_score": None,
                }
            return {
                "average_score": _as_int(row[0]),
                "interaction_count": int(row[1] or 0),
                "last_interaction_at": _iso(row[2]),
                "highest_score": _as_int(row[3]),
                "lowest_score": _as_int(row[4]),
            }

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def average_scores(self, *, account_id: str, contact_ids: list[str]) -> dict[str, int]:
        if not contact_ids:
            return {}
        sql = f"""
            SELECT contact_id, {_SCORE_SQL}
            FROM {self._table_name}
            WHERE account_id = %s AND contact_id = ANY(%s) AND support_likelihood IS NOT NULL
            GROUP BY contact_id
        """

        def _op(conn: Any) -> dict[str, int]:
            with conn.cursor() as cur:
                cur.execute(sql, (account_id, list(contact_ids)))
                rows = cur.fetchall()
            return {str(row[0]): int(row[1]) for row in rows if row[1] is not None}

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def statistics(
        self,
        *,
        account_id: str,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict[str, Any]:
        where = "WHERE account_id = %s"
        params: list[Any] = [account_id]
        if start_date is not None:
            where += " AND created_at >= %s"
            params.append(start_date)
        if end_date is not None:
            where += " AND created_at <= %s"
            params.append(end_date)
        overall_sql = f"SELECT COUNT(*), COUNT(DISTINCT contact_id), {_SCORE_SQL} FROM {self._table_name} {where}"
        breakdown_sql = f"""
            SELECT interaction_type, interaction_method, COUNT(*), COUNT(DISTINCT contact_id),
                   COUNT(DISTINCT user_id), {_SCORE_SQL}
            FROM {self._table_name} {where}
            GROUP BY interaction_type, interaction_method
            ORDER BY interaction_type, interaction_method
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(overall_sql, tuple(params))
                overall = cur.fetchone() or (0, 0, None)
                cur.execute(breakdown_sql, tuple(params))
                rows = cur.fetchall()
            return {
                "overall": {
                    "total_interactions": int(overall[0] or 0),
                    "unique_contacts": int(overall[1] or 0),
                    "average_support_score": _as_int(overall[2]),
                },
                "by_type": [
                    {
                        "interaction_type": row[0],
                        "interaction_method": row[1],
                        "count": int(row[2]),
                        "unique_contacts": int(row[3]),
                        "unique_users": int(row[4]),
                        "average_support_score": _as_int(row[5]),
                    }
                    for row in rows
                ],
            }

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)
