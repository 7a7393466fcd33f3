from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from typing import Any

from election_core.db.postgres import PostgresTxRunner
from election_core.errors import duplicate_verification_code
from election_core.repositories.json_files import AccountJsonFiles
from election_core.repositories.poll_turnout import poll_key, turnout_increment_sql
from election_core.schemas import VoteMarkQuery, parse_instant

_COLUMNS = (
    "id, account_id, contact_id, poll_number, riding, province, marked_by, "
    "verification_code, notes, metadata, marked_at"
)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _contact_search_hit(mark: dict[str, Any], needle: str) -> bool:
    metadata = mark.get("metadata") if isinstance(mark.get("metadata"), dict) else {}
    candidates = (mark.get("contact_id"), mark.get("contact_name"), metadata.get("contact_name"))
    return any(isinstance(x, str) and needle in x.lower() for x in candidates)


_EPOCH = datetime.min.replace(tzinfo=UTC)


def _recency_key(item: tuple[int, dict[str, Any]]) -> tuple[bool, datetime, int]:
    index, row = item
    marked = parse_instant(row.get("marked_at"))
    return (marked is not None, marked or _EPOCH, index)


def _after(row: dict[str, Any], start: datetime) -> bool:
    marked = parse_instant(row.get("marked_at"))
    return marked is not None and marked >= start


def _before(row: dict[str, Any], end: datetime) -> bool:
    marked = parse_instant(row.get("marked_at"))
    return marked is not None and marked <= end


def _page(rows: list[dict[str, Any]], *, limit: int, offset: int) -> dict[str, Any]:
    total = len(rows)
    page = rows[offset : offset + limit]
    return {
        "vote_marks": page,
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(page) < total,
    }


class JsonVoteMarksRepository:
    """Append-only vote marks in vote-marks.json; exposes no update or delete."""

    def __init__(self, *, files: AccountJsonFiles) -> None:
        self._files = files

    def append(self, *, account_id: str, mark: dict[str, Any]) -> dict[str, Any]:
        entry = dict(mark)

        def _apply(rows: list[dict[str, Any]]) -> dict[str, Any]:
            if any(x.get("verification_code") == entry["verification_code"] for x in rows):
                raise duplicate_verification_code(entry["verification_code"])
            rows.append(entry)
            return dict(entry)

        return self._files.update(account_id=account_id, entity="vote_marks", fn=_apply)

    def _ordered(self, account_id: str) -> list[dict[str, Any]]:
        rows = self._files.read(account_id=account_id, entity="vote_marks")
        indexed = sorted(enumerate(rows), key=_recency_key, reverse=True)
        return [row for _, row in indexed]

    def list_for_poll(
        self,
        *,
        account_id: str,
        poll_number: str,
        riding: str | None = None,
        province: str | None = None,
    ) -> list[dict[str, Any]]:
        return [
            x
            for x in self._ordered(account_id)
            if x.get("poll_number") == poll_number
            and (not riding or x.get("riding") == riding)
            and (not province or x.get("province") == province)
        ]

    def query(self, *, account_id: str, query: VoteMarkQuery) -> dict[str, Any]:
        rows = self._ordered(account_id)
        if query.poll_number:
            rows = [x for x in rows if x.get("poll_number") == query.poll_number]
        if query.riding:
            rows = [x for x in rows if x.get("riding") == query.riding]
        if query.province:
            rows = [x for x in rows if x.get("province") == query.province]
        if query.marked_by:
            rows = [x for x in rows if x.get("marked_by") == query.marked_by]
        if query.start_date is not None:
            rows = [x for x in rows if _after(x, query.start_date)]
        if query.end_date is not None:
            rows = [x for x in rows if _before(x, query.end_date)]
        if query.contact_search:
            needle = query.contact_search.lower()
            rows = [x for x in rows if _contact_search_hit(x, needle)]
        return _page(rows, limit=query.limit, offset=query.offset)

    def find_by_code(self, *, account_id: str, verification_code: str) -> dict[str, Any] | None:
        for row in self._files.read(account_id=account_id, entity="vote_marks"):
            if row.get("verification_code") == verification_code:
                return row
        return None

    def count_for_poll(self, *, account_id: str, poll_number: str, riding: str | None, province: str | None) -> int:
        key = poll_key(poll_number, riding, province)
        rows = self._files.read(account_id=account_id, entity="vote_marks")
        return sum(1 for x in rows if poll_key(x.get("poll_number", ""), x.get("riding"), x.get("province")) == key)


def _row_to_mark(row: tuple[Any, ...] | list[Any]) -> dict[str, Any]:
    marked_at = row[10]
    return {
        "id": row[0],
        "account_id": row[1],
        "contact_id": row[2],
        "poll_number": row[3],
        "riding": row[4],
        "province": row[5],
        "marked_by": row[6],
        "verification_code": row[7],
        "notes": row[8],
        "metadata": row[9] if isinstance(row[9], dict) else {},
        "marked_at": marked_at.isoformat() if isinstance(marked_at, datetime) else marked_at,
    }


class PostgresVoteMarksRepository:
    """Vote marks plus the turnout bump, committed together in one transaction."""

    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        table_name: str = "election_vote_marks",
        turnout_table: str = "election_poll_turnout",
    ) -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)
        self._turnout_sql = turnout_increment_sql(turnout_table)

    def append(self, *, account_id: str, mark: dict[str, Any]) -> dict[str, Any]:
        sql = f"""
            INSERT INTO {self._table_name} (
                id, account_id, contact_id, poll_number, riding, province, marked_by,
                verification_code, notes, metadata, marked_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s)
            RETURNING {_COLUMNS}
        """
        _, riding_key, province_key = poll_key(mark["poll_number"], mark.get("riding"), mark.get("province"))

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        mark["id"],
                        account_id,
                        mark["contact_id"],
                        mark["poll_number"],
                        mark.get("riding"),
                        mark.get("province"),
                        mark.get("marked_by"),
                        mark["verification_code"],
                        mark.get("notes"),
                        json.dumps(mark.get("metadata") or {}, ensure_ascii=True, sort_keys=True),
                        mark["marked_at"],
                    ),
                )
                row = cur.fetchone()
                cur.execute(
                    self._turnout_sql,
                    (account_id, mark["poll_number"], riding_key, province_key, mark.get("marked_by")),
                )
            return _row_to_mark(row)

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def _select(self, account_id: str, where: str, params: list[Any], suffix: str = "") -> list[dict[str, Any]]:
        sql = f"SELECT {_COLUMNS} FROM {self._table_name} WHERE account_id = %s{where} ORDER BY marked_at DESC{suffix}"

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple([account_id, *params]))
                rows = cur.fetchall()
            return [_row_to_mark(row) for row in rows]

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def list_for_poll(
        self,
        *,
        account_id: str,
        poll_number: str,
        riding: str | None = None,
        province: str | None = None,
    ) -> list[dict[str, Any]]:
        where = " AND poll_number = %s"
        params: list[Any] = [poll_number]
        if riding:
            where += " AND riding = %s"
            params.append(riding)
        if province:
            where += " AND province = %s"
            params.append(province)
        return self._select(account_id, where, params)

    def query(self, *, account_id: str, query: VoteMarkQuery) -> dict[str, Any]:
        where = ""
        params: list[Any] = []
        for column, value in (
            ("poll_number", query.poll_number),
            ("riding", query.riding),
            ("province", query.province),
            ("marked_by", query.marked_by),
        ):
            if value:
                where += f" AND {column} = %s"
                params.append(value)
        if query.start_date is not None:
            where += " AND marked_at >= %s"
            params.append(query.start_date)
        if query.end_date is not None:
            where += " AND marked_at <= %s"
            params.append(query.end_date)
        if query.contact_search:
            where += " AND (LOWER(contact_id) LIKE %s OR LOWER(COALESCE(metadata->>'contact_name', '')) LIKE %s)"
            needle = f"%{query.contact_search.lower()}%"
            params.extend([needle, needle])
        count_sql = f"SELECT COUNT(*) FROM {self._table_name} WHERE account_id = %s{where}"

        def _count(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(count_sql, tuple([account_id, *params]))
                row = cur.fetchone()
            return int(row[0]) if row else 0

        total = self._tx_runner.run_in_tx(account_id=account_id, fn=_count)
        page = self._select(account_id, where, [*params, query.limit, query.offset], " LIMIT %s OFFSET %s")
        return {
            "vote_marks": page,
            "total": total,
            "limit": query.limit,
            "offset": query.offset,
            "has_more": query.offset + len(page) < total,
        }

    def find_by_code(self, *, account_id: str, verification_code: str) -> dict[str, Any] | None:
        rows = self._select(account_id, " AND verification_code = %s", [verification_code], " LIMIT 1")
        return rows[0] if rows else None

    def count_for_poll(self, *, account_id: str, poll_number: str, riding: str | None, province: str | None) -> int:
        sql = f"""
            SELECT COUNT(*) FROM {self._table_name}
            WHERE account_id = %s AND poll_number = %s
              AND COALESCE(riding, '') = %s AND COALESCE(province, '') = %s
        """
        _, riding_key, province_key = poll_key(poll_number, riding, province)

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, (account_id, poll_number, riding_key, province_key))
                row = cur.fetchone()
            return int(row[0]) if row else 0

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)
