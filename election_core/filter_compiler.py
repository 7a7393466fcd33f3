from __future__ import annotations

import logging
from typing import Any

from election_core.schemas import FilterConfig, parse_instant
from election_core.support import SUPPORT_CATEGORY_RANGES

logger = logging.getLogger(__name__)

CONTACT_COLUMNS: tuple[str, ...] = (
    "id",
    "first_name",
    "last_name",
    "name",
    "email",
    "phone",
    "address",
    "city",
    "province",
    "postal_code",
    "poll_number",
    "riding",
    "role",
    "category",
    "categories",
    "custom_fields",
    "created_at",
)

# Rounded mean, half-up, so SQL and Python agree on x.5 means.
_SUPPORT_SCORE_SQL = "FLOOR(AVG(support_likelihood) + 0.5)::int"

_ORDER_SQL: dict[str, str] = {
    "support_score": "agg.support_score DESC NULLS LAST, c.id ASC",
    "last_interaction": "agg.last_interaction_at DESC NULLS LAST, c.id ASC",
    "name": "LOWER(COALESCE(NULLIF(c.name, ''), CONCAT_WS(' ', c.first_name, c.last_name))) ASC, c.id ASC",
    "created_at": "c.created_at DESC NULLS LAST, c.id ASC",
}


class CompiledFilter:
    """FROM/WHERE fragment shared by the count and the page query."""

    def __init__(self, *, from_sql: str, where_sql: str, params: list[Any]) -> None:
        self.from_sql = from_sql
        self.where_sql = where_sql
        self.params = params

    def count_sql(self) -> tuple[str, list[Any]]:
        return f"SELECT COUNT(*) FROM {self.from_sql} WHERE {self.where_sql}", list(self.params)

    def page_sql(self, *, order_by: str | None, limit: int | None, offset: int) -> tuple[str, list[Any]]:
        columns = ", ".join(f"c.{x}" for x in CONTACT_COLUMNS)
        sql = (
            f"SELECT {columns}, agg.support_score, COALESCE(agg.interaction_count, 0), agg.last_interaction_at "
            f"FROM {self.from_sql} WHERE {self.where_sql} ORDER BY {order_sql(order_by)}"
        )
        params = list(self.params)
        if limit is not None:
            sql += " LIMIT %s"
            params.append(int(limit))
        sql += " OFFSET %s"
        params.append(int(offset))
        return sql, params


def order_sql(order_by: str | None) -> str:
    return _ORDER_SQL.get(order_by or "created_at", _ORDER_SQL["created_at"])


def compile_filter(
    *,
    account_id: str,
    filter_config: FilterConfig,
    contacts_table: str = "contacts",
    interactions_table: str = "election_interactions",
) -> CompiledFilter:
    """Translate a filter into a parameterized predicate over contacts plus interaction aggregates."""
    params: list[Any] = [account_id, account_id]
    from_sql = (
        f"{contacts_table} c LEFT JOIN ("
        f"SELECT contact_id, {_SUPPORT_SCORE_SQL} AS support_score, "
        "COUNT(*) AS interaction_count, MAX(created_at) AS last_interaction_at "
        f"FROM {interactions_table} WHERE account_id = %s GROUP BY contact_id"
        ") agg ON agg.contact_id = c.id"
    )
    clauses = ["c.account_id = %s", "c.deleted_at IS NULL"]

    static_ids = filter_config.static_ids
    if static_ids is not None:
        clauses.append("c.id = ANY(%s)")
        params.append(static_ids)
        return CompiledFilter(from_sql=from_sql, where_sql=" AND ".join(clauses), params=params)

    if filter_config.poll_number:
        clauses.append("c.poll_number = %s")
        params.append(filter_config.poll_number)
    if filter_config.riding:
        clauses.append("c.riding = %s")
        params.append(filter_config.riding)
    if filter_config.province:
        clauses.append("c.province = %s")
        params.append(filter_config.province)
    if filter_config.city:
        clauses.append("LOWER(c.city) = LOWER(%s)")
        params.append(filter_config.city)
    if filter_config.categories:
        clauses.append("c.categories ?| %s::text[]")
        params.append(list(filter_config.categories))
    if filter_config.category:
        clauses.append("(c.categories ? %s OR c.category = %s)")
        params.extend([filter_config.category, filter_config.category])

    if filter_config.min_support_score is not None:
        clauses.append("agg.support_score >= %s")
        params.append(filter_config.min_support_score)
    if filter_config.max_support_score is not None:
        clauses.append("agg.support_score <= %s")
        params.append(filter_config.max_support_score)
    if filter_config.support_category is not None:
        low, high = SUPPORT_CATEGORY_RANGES[filter_config.support_category]
        clauses.append("agg.support_score BETWEEN %s AND %s")
        params.extend([low, high])
    if filter_config.has_interactions is True:
        clauses.append("COALESCE(agg.interaction_count, 0) > 0")
    if filter_config.last_interaction_after is not None:
        clauses.append(
            f"EXISTS (SELECT 1 FROM {interactions_table} i "
            "WHERE i.account_id = c.account_id AND i.contact_id = c.id AND i.created_at >= %s)"
        )
        params.append(filter_config.last_interaction_after)
    if filter_config.last_interaction_before is not None:
        clauses.append(
            f"EXISTS (SELECT 1 FROM {interactions_table} i "
            "WHERE i.account_id = c.account_id AND i.contact_id = c.id AND i.created_at <= %s)"
        )
        params.append(filter_config.last_interaction_before)

    return CompiledFilter(from_sql=from_sql, where_sql=" AND ".join(clauses), params=params)


def _tags(contact: dict[str, Any]) -> list[str]:
    raw = contact.get("categories")
    if isinstance(raw, list):
        return [str(x) for x in raw]
    return []


def is_deleted(contact: dict[str, Any]) -> bool:
    return bool(contact.get("deleted")) or contact.get("deleted_at") is not None


def matches(contact: dict[str, Any], filter_config: FilterConfig) -> bool:
    """In-memory twin of the structural clauses in compile_filter."""
    if is_deleted(contact):
        return False
    static_ids = filter_config.static_ids
    if static_ids is not None:
        return str(contact.get("id")) in set(static_ids)
    if filter_config.poll_number and contact.get("poll_number") != filter_config.poll_number:
        return False
    if filter_config.riding and contact.get("riding") != filter_config.riding:
        return False
    if filter_config.province and contact.get("province") != filter_config.province:
        return False
    if filter_config.city:
        city = contact.get("city")
        if not isinstance(city, str) or city.lower() != filter_config.city.lower():
            return False
    tags = _tags(contact)
    if filter_config.categories and not set(tags).intersection(filter_config.categories):
        return False
    if filter_config.category:
        if filter_config.category not in tags and contact.get("category") != filter_config.category:
            return False
    return True


def log_document_noops(filter_config: FilterConfig, *, account_id: str) -> None:
    skipped = filter_config.interaction_fields()
    if skipped and filter_config.static_ids is None:
        logger.info(
            "document_filter_noop account_id=%s fields=%s reason=no_interaction_data",
            account_id,
            ",".join(skipped),
        )


def _display_name(contact: dict[str, Any]) -> str:
    name = contact.get("name")
    if isinstance(name, str) and name:
        return name.lower()
    parts = [contact.get("first_name"), contact.get("last_name")]
    return " ".join(str(x) for x in parts if x is not None).lower()


def _desc_nulls_last(rows: list[dict[str, Any]], key: str) -> list[dict[str, Any]]:
    present = [r for r in rows if r.get(key) is not None]
    missing = [r for r in rows if r.get(key) is None]
    present.sort(key=lambda r: r[key], reverse=True)
    return present + missing


def sort_contacts(rows: list[dict[str, Any]], order_by: str | None) -> list[dict[str, Any]]:
    """Order enriched contacts like order_sql does; ties stay in id order."""
    ordered = sorted(rows, key=lambda r: str(r.get("id", "")))
    if order_by == "support_score":
        return _desc_nulls_last(ordered, "support_score")
    if order_by == "last_interaction":
        keyed = [dict(r, _sort_at=parse_instant(r.get("last_interaction_at"))) for r in ordered]
        return [_strip_sort_key(r) for r in _desc_nulls_last(keyed, "_sort_at")]
    if order_by == "name":
        ordered.sort(key=_display_name)
        return ordered
    keyed = [dict(r, _sort_at=parse_instant(r.get("created_at"))) for r in ordered]
    return [_strip_sort_key(r) for r in _desc_nulls_last(keyed, "_sort_at")]


def _strip_sort_key(row: dict[str, Any]) -> dict[str, Any]:
    row.pop("_sort_at", None)
    return row
