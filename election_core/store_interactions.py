from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from election_core.backends import BackendDispatcher, is_fallback_error
from election_core.errors import BackendUnavailableError, validation_error
from election_core.repositories.interactions import PostgresInteractionsRepository
from election_core.schemas import InteractionRequest, parse_instant, parse_model
from election_core.support import support_category_for_score

logger = logging.getLogger(__name__)


def neutral_support_score() -> dict[str, Any]:
    return {
        "average_score": None,
        "interaction_count": 0,
        "last_interaction_at": None,
        "highest_score": None,
        "lowest_score": None,
        "support_category": "unknown",
    }


def _instant_arg(value: Any, *, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    parsed = parse_instant(value)
    if parsed is None:
        raise validation_error("INVALID_DATE_RANGE", f"{field} must be an ISO-8601 timestamp")
    return parsed


class InteractionAggregator:
    """Support scores derived from the append-only interaction log.

    Interactions live only in PostgreSQL. Writes and history reads raise
    BackendUnavailableError without it; the score lookups used by the tally
    degrade to neutral or empty results instead.
    """

    def __init__(
        self,
        *,
        dispatcher: BackendDispatcher,
        pg_interactions: PostgresInteractionsRepository | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._pg = pg_interactions

    def _repo(self) -> PostgresInteractionsRepository:
        if self._pg is None:
            raise BackendUnavailableError("interactions require DATABASE_URL")
        return self._pg

    def record_interaction(self, interaction_data: Any) -> dict[str, Any]:
        request = parse_model(InteractionRequest, interaction_data, default_code="INVALID_INTERACTION")
        payload = request.model_dump(exclude={"account_id"})

        def _op() -> dict[str, Any]:
            stored = self._repo().append(account_id=request.account_id, interaction=payload)
            stored["contact_support_score"] = self.update_contact_support_score(request.account_id, request.contact_id)
            return stored

        stored = self._dispatcher.run_relational("record_interaction", _op)
        logger.info(
            "interaction_recorded account_id=%s contact_id=%s interaction_type=%s support_likelihood=%s",
            request.account_id,
            request.contact_id,
            request.interaction_type,
            request.support_likelihood,
        )
        return stored

    def update_contact_support_score(self, account_id: str, contact_id: str) -> int | None:
        """Rounded mean of the contact's scored interactions; not persisted on the contact."""
        stats = self._dispatcher.run_relational(
            "update_contact_support_score",
            lambda: self._repo().score_stats(account_id=account_id, contact_id=contact_id),
        )
        return stats["average_score"]

    def get_contact_support_score(self, account_id: str, contact_id: str) -> dict[str, Any]:
        try:
            stats = self._dispatcher.run_relational(
                "get_contact_support_score",
                lambda: self._repo().score_stats(account_id=account_id, contact_id=contact_id),
            )
        except Exception as exc:
            if not is_fallback_error(exc):
                raise
            logger.warning(
                "support_score_unavailable account_id=%s contact_id=%s error=%s",
                account_id,
                contact_id,
                type(exc).__name__,
            )
            return neutral_support_score()
        result = dict(stats)
        result["support_category"] = support_category_for_score(stats["average_score"])
        return result

    def get_support_categories_for_contacts(self, account_id: str, contact_ids: list[str]) -> dict[str, str]:
        ids = [str(x) for x in contact_ids or []]
        if not ids:
            return {}
        try:
            scores = self._dispatcher.run_relational(
                "get_support_categories_for_contacts",
                lambda: self._repo().average_scores(account_id=account_id, contact_ids=ids),
            )
        except Exception as exc:
            if not is_fallback_error(exc):
                raise
            logger.warning(
                "support_categories_unavailable account_id=%s contacts=%s error=%s",
                account_id,
                len(ids),
                type(exc).__name__,
            )
            return {}
        return {contact_id: support_category_for_score(score) for contact_id, score in scores.items()}

    def get_contact_interaction_history(
        self,
        account_id: str,
        contact_id: str,
        interaction_type: str | None = None,
        interaction_method: str | None = None,
        start_date: Any = None,
        end_date: Any = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        start = _instant_arg(start_date, field="start_date")
        end = _instant_arg(end_date, field="end_date")
        if limit is not None and int(limit) < 1:
            raise validation_error("INVALID_PAGINATION", "limit must be positive")
        return self._dispatcher.run_relational(
            "get_contact_interaction_history",
            lambda: self._repo().list_for_contact(
                account_id=account_id,
                contact_id=contact_id,
                interaction_type=interaction_type,
                interaction_method=interaction_method,
                start_date=start,
                end_date=end,
                limit=limit,
            ),
        )

    def get_last_contact_info(self, account_id: str, contact_id: str) -> dict[str, Any] | None:
        rows = self.get_contact_interaction_history(account_id, contact_id, limit=1)
        if not rows:
            return None
        last = rows[0]
        return {
            "method": last["interaction_method"],
            "timestamp": last["created_at"],
            "type": last["interaction_type"],
            "support_likelihood": last["support_likelihood"],
        }

    def get_interaction_statistics(
        self,
        account_id: str,
        start_date: Any = None,
        end_date: Any = None,
    ) -> dict[str, Any]:
        start = _instant_arg(start_date, field="start_date")
        end = _instant_arg(end_date, field="end_date")
        return self._dispatcher.run_relational(
            "get_interaction_statistics",
            lambda: self._repo().statistics(account_id=account_id, start_date=start, end_date=end),
        )
