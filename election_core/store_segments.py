from __future__ import annotations

import logging
import random
import string
import time
from typing import Any

from election_core.backends import BackendDispatcher
from election_core.errors import ElectionError
from election_core.filter_compiler import log_document_noops, matches, sort_contacts
from election_core.repositories.contacts import JsonContactsRepository, PostgresContactsRepository
from election_core.repositories.election_lists import JsonElectionListsRepository, PostgresElectionListsRepository
from election_core.schemas import ContactQueryOptions, FilterConfig, SaveListRequest, parse_filter_config, parse_model

logger = logging.getLogger(__name__)

_UNSET: Any = object()
_BASE36 = string.digits + string.ascii_lowercase


def _new_list_id() -> str:
    suffix = "".join(random.choice(_BASE36) for _ in range(9))
    return f"list_{int(time.time() * 1000)}_{suffix}"


def _public_contact(contact: dict[str, Any]) -> dict[str, Any]:
    out = {k: v for k, v in contact.items() if k not in {"deleted", "deleted_at"}}
    out.setdefault("support_score", None)
    out.setdefault("interaction_count", 0)
    out.setdefault("last_interaction_at", None)
    return out


def _page(rows: list[dict[str, Any]], *, total: int, options: ContactQueryOptions) -> dict[str, Any]:
    return {
        "contacts": rows,
        "total": total,
        "limit": options.limit,
        "offset": options.offset,
        "has_more": options.offset + len(rows) < total,
    }


class SegmentManager:
    """Dynamic and static contact lists evaluated on either backend."""

    def __init__(
        self,
        *,
        dispatcher: BackendDispatcher,
        contacts: JsonContactsRepository,
        lists: JsonElectionListsRepository,
        pg_contacts: PostgresContactsRepository | None = None,
        pg_lists: PostgresElectionListsRepository | None = None,
        page_size: int = 100,
    ) -> None:
        self._dispatcher = dispatcher
        self._contacts = contacts
        self._lists = lists
        self._pg_contacts = pg_contacts
        self._pg_lists = pg_lists
        self._page_size = page_size

    def _document_matches(self, account_id: str, filter_config: FilterConfig) -> list[dict[str, Any]]:
        log_document_noops(filter_config, account_id=account_id)
        found: dict[str, dict[str, Any]] = {}
        for contact in self._contacts.list_contacts(account_id=account_id, include_deleted=True):
            if contact["id"] not in found and matches(contact, filter_config):
                found[contact["id"]] = contact
        return list(found.values())

    def calculate_list_contact_count(self, account_id: str, filter_config: Any) -> int:
        config = parse_filter_config(filter_config)
        pg = self._pg_contacts
        return self._dispatcher.run(
            "calculate_list_contact_count",
            relational=None if pg is None else lambda: pg.count(account_id=account_id, filter_config=config),
            document=lambda: len(self._document_matches(account_id, config)),
        )

    def get_contacts_by_filters(
        self,
        account_id: str,
        filter_config: Any,
        limit: Any = _UNSET,
        offset: int = 0,
        order_by: str | None = None,
    ) -> dict[str, Any]:
        config = parse_filter_config(filter_config)
        options = parse_model(
            ContactQueryOptions,
            {"limit": self._page_size if limit is _UNSET else limit, "offset": offset, "order_by": order_by},
            default_code="INVALID_PAGINATION",
        )
        pg = self._pg_contacts
        return self._dispatcher.run(
            "get_contacts_by_filters",
            relational=None if pg is None else lambda: self._relational_page(pg, account_id, config, options),
            document=lambda: self._document_page(account_id, config, options),
        )

    @staticmethod
    def _relational_page(
        pg: PostgresContactsRepository,
        account_id: str,
        config: FilterConfig,
        options: ContactQueryOptions,
    ) -> dict[str, Any]:
        total = pg.count(account_id=account_id, filter_config=config)
        rows = pg.page(
            account_id=account_id,
            filter_config=config,
            order_by=options.order_by,
            limit=options.limit,
            offset=options.offset,
        )
        return _page(rows, total=total, options=options)

    def _document_page(self, account_id: str, config: FilterConfig, options: ContactQueryOptions) -> dict[str, Any]:
        rows = [_public_contact(x) for x in self._document_matches(account_id, config)]
        rows = sort_contacts(rows, options.order_by)
        end = None if options.limit is None else options.offset + options.limit
        return _page(rows[options.offset : end], total=len(rows), options=options)

    def save_list(self, list_data: Any) -> dict[str, Any]:
        request = parse_model(SaveListRequest, list_data, default_code="INVALID_LIST_DATA")
        account_id = request.account_id
        list_id = request.id or _new_list_id()

        stored_filter = request.filter_config.to_stored()
        if request.contact_ids:
            stored_filter["_staticContactIds"] = list(request.contact_ids)
            stored_filter["_isStatic"] = True
        contact_count = self.calculate_list_contact_count(account_id, stored_filter)

        record = {
            "id": list_id,
            "account_id": account_id,
            "user_id": request.user_id,
            "name": request.name,
            "description": request.description,
            "filter_config": stored_filter,
            "is_shared": request.is_shared,
            "contact_count": contact_count,
        }
        pg = self._pg_lists
        saved = self._dispatcher.run(
            "save_list",
            relational=None if pg is None else lambda: self._relational_save(pg, account_id, record),
            document=lambda: self._lists.upsert(account_id=account_id, record=record),
        )
        logger.info(
            "election_list_saved account_id=%s list_id=%s contact_count=%s",
            account_id,
            list_id,
            contact_count,
        )
        return saved

    @staticmethod
    def _relational_save(
        pg: PostgresElectionListsRepository,
        account_id: str,
        record: dict[str, Any],
    ) -> dict[str, Any]:
        saved = pg.upsert(account_id=account_id, record=record)
        if saved is None:
            raise ElectionError(
                code="LIST_SCOPE_VIOLATION",
                message="list id belongs to another account",
                error_class="security_sensitive",
                retryable=False,
                http_status=403,
            )
        return saved

    def delete_list(self, list_id: str, account_id: str) -> bool:
        pg = self._pg_lists
        deleted = self._dispatcher.run(
            "delete_list",
            relational=None if pg is None else lambda: pg.soft_delete(account_id=account_id, list_id=list_id),
            document=lambda: self._lists.soft_delete(account_id=account_id, list_id=list_id),
        )
        if deleted:
            logger.info("election_list_deleted account_id=%s list_id=%s", account_id, list_id)
        return deleted

    def get_lists(self, account_id: str, user_id: str | None = None) -> list[dict[str, Any]]:
        pg = self._pg_lists
        return self._dispatcher.run(
            "get_lists",
            relational=None if pg is None else lambda: pg.list_visible(account_id=account_id, user_id=user_id),
            document=lambda: self._lists.list_visible(account_id=account_id, user_id=user_id),
        )

    def get_list(self, list_id: str, account_id: str) -> dict[str, Any] | None:
        pg = self._pg_lists
        return self._dispatcher.run(
            "get_list",
            relational=None if pg is None else lambda: pg.get(account_id=account_id, list_id=list_id),
            document=lambda: self._lists.get(account_id=account_id, list_id=list_id),
        )

    def refresh_list_count(self, list_id: str, account_id: str) -> dict[str, Any] | None:
        current = self.get_list(list_id, account_id)
        if current is None:
            return None
        count = self.calculate_list_contact_count(account_id, current.get("filter_config") or {})
        pg = self._pg_lists
        return self._dispatcher.run(
            "refresh_list_count",
            relational=None
            if pg is None
            else lambda: pg.set_contact_count(account_id=account_id, list_id=list_id, contact_count=count),
            document=lambda: self._lists.set_contact_count(account_id=account_id, list_id=list_id, contact_count=count),
        )

    def count_on_each_backend(self, account_id: str, filter_config: Any) -> dict[str, Any]:
        """Count one filter on both backends without fallback, for parity checks."""
        config = parse_filter_config(filter_config)
        relational_count = None
        if self._pg_contacts is not None and self._dispatcher.relational_ready():
            relational_count = self._pg_contacts.count(account_id=account_id, filter_config=config)
        return {
            "document": len(self._document_matches(account_id, config)),
            "relational": relational_count,
            "interaction_fields": config.interaction_fields(),
        }
