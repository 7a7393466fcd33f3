from __future__ import annotations

import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

from election_core.db.postgres import PostgresTxRunner
from election_core.filter_compiler import CONTACT_COLUMNS, compile_filter
from election_core.repositories.json_files import AccountJsonFiles
from election_core.schemas import FilterConfig

ContactsProvider = Callable[[str], list[dict[str, Any]]]

# snake_case field -> accepted source keys, first hit wins.
_FIELD_SOURCES: dict[str, tuple[str, ...]] = {
    "first_name": ("first_name", "firstName"),
    "last_name": ("last_name", "lastName"),
    "name": ("name",),
    "email": ("email",),
    "phone": ("phone",),
    "address": ("address",),
    "city": ("city",),
    "province": ("province",),
    "postal_code": ("postal_code", "postalCode"),
    "poll_number": ("poll_number", "pollNumber"),
    "riding": ("riding",),
    "role": ("role",),
    "category": ("category",),
    "custom_fields": ("custom_fields", "customFields"),
    "created_at": ("created_at", "createdAt"),
    "deleted_at": ("deleted_at", "deletedAt"),
}


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _iso(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def normalize_contact(raw: dict[str, Any]) -> dict[str, Any]:
    """Map a CRM contact (camelCase or snake_case) onto the shared output shape."""
    contact: dict[str, Any] = {"id": str(raw.get("id", ""))}
    for field, sources in _FIELD_SOURCES.items():
        value = None
        for key in sources:
            if raw.get(key) is not None:
                value = raw[key]
                break
        contact[field] = value
    categories = raw.get("categories")
    if isinstance(categories, list):
        contact["categories"] = [str(x) for x in categories if x is not None]
    elif isinstance(categories, str) and categories:
        contact["categories"] = [categories]
    else:
        contact["categories"] = []
    if not isinstance(contact["custom_fields"], dict):
        contact["custom_fields"] = {}
    contact["deleted"] = bool(raw.get("deleted")) or contact["deleted_at"] is not None
    contact["created_at"] = _iso(contact["created_at"])
    contact["deleted_at"] = _iso(contact["deleted_at"])
    return contact


def _row_to_contact(row: tuple[Any, ...] | list[Any]) -> dict[str, Any]:
    contact = dict(zip(CONTACT_COLUMNS, row[: len(CONTACT_COLUMNS)]))
    contact["id"] = str(contact["id"])
    contact["categories"] = contact["categories"] if isinstance(contact["categories"], list) else []
    contact["custom_fields"] = contact["custom_fields"] if isinstance(contact["custom_fields"], dict) else {}
    contact["created_at"] = _iso(contact["created_at"])
    return contact


class JsonContactsRepository:
    """Read-only contacts for the document backend, supplied by the CRM collaborator."""

    def __init__(self, *, files: AccountJsonFiles, provider: ContactsProvider | None = None) -> None:
        self._files = files
        self._provider = provider

    def _raw(self, account_id: str) -> list[dict[str, Any]]:
        if self._provider is not None:
            return list(self._provider(account_id) or [])
        return self._files.read(account_id=account_id, entity="contacts")

    def list_contacts(self, *, account_id: str, include_deleted: bool = False) -> list[dict[str, Any]]:
        contacts = [normalize_contact(x) for x in self._raw(account_id) if isinstance(x, dict)]
        if include_deleted:
            return contacts
        return [x for x in contacts if not x["deleted"]]


class PostgresContactsRepository:
    """Filter evaluation over contacts joined with per-contact interaction aggregates."""

    def __init__(
        self,
        *,
        tx_runner: PostgresTxRunner,
        table_name: str = "contacts",
        interactions_table: str = "election_interactions",
    ) -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)
        self._interactions_table = _validate_identifier(interactions_table)

    def _compile(self, account_id: str, filter_config: FilterConfig):
        return compile_filter(
            account_id=account_id,
            filter_config=filter_config,
            contacts_table=self._table_name,
            interactions_table=self._interactions_table,
        )

    def count(self, *, account_id: str, filter_config: FilterConfig) -> int:
        sql, params = self._compile(account_id, filter_config).count_sql()

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                row = cur.fetchone()
            return int(row[0]) if row else 0

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def page(
        self,
        *,
        account_id: str,
        filter_config: FilterConfig,
        order_by: str | None,
        limit: int | None,
        offset: int,
    ) -> list[dict[str, Any]]:
        sql, params = self._compile(account_id, filter_config).page_sql(order_by=order_by, limit=limit, offset=offset)
        width = len(CONTACT_COLUMNS)

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall()
            out: list[dict[str, Any]] = []
            for row in rows:
                contact = _row_to_contact(row)
                contact["support_score"] = int(row[width]) if row[width] is not None else None
                contact["interaction_count"] = int(row[width + 1] or 0)
                contact["last_interaction_at"] = _iso(row[width + 2])
                out.append(contact)
            return out

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)

    def list_contacts(self, *, account_id: str) -> list[dict[str, Any]]:
        columns = ", ".join(CONTACT_COLUMNS)
        sql = f"""
            SELECT {columns}
            FROM {self._table_name}
            WHERE account_id = %s AND deleted_at IS NULL
            ORDER BY created_at ASC, id ASC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (account_id,))
                rows = cur.fetchall()
            return [_row_to_contact(row) for row in rows]

        return self._tx_runner.run_in_tx(account_id=account_id, fn=_op)
