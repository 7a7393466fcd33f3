from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from election_core.backends import BackendDispatcher
from election_core.errors import validation_error
from election_core.repositories.voted_tally import JsonVotedTallyRepository, PostgresVotedTallyRepository
from election_core.store_interactions import InteractionAggregator
from election_core.support import category_from_tags, empty_histogram, round_half_up

logger = logging.getLogger(__name__)

AccountContactsProvider = Callable[[], list[dict[str, Any]]]


def _contact_id(contact_id: Any) -> str:
    value = str(contact_id).strip() if contact_id is not None else ""
    if not value:
        raise validation_error("INVALID_CONTACT_ID", "contact_id is required")
    return value


class VotedTally:
    """Mutable election-day voted flags, separate from the vote-mark audit log."""

    def __init__(
        self,
        *,
        dispatcher: BackendDispatcher,
        voted: JsonVotedTallyRepository,
        pg_voted: PostgresVotedTallyRepository | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._voted = voted
        self._pg = pg_voted

    def set_voted(self, account_id: str, contact_id: Any, marked_by: str | None = None) -> dict[str, Any]:
        cid = _contact_id(contact_id)
        pg = self._pg
        return self._dispatcher.run(
            "set_voted",
            relational=None
            if pg is None
            else lambda: pg.set_voted(account_id=account_id, contact_id=cid, marked_by=marked_by),
            document=lambda: self._voted.set_voted(account_id=account_id, contact_id=cid, marked_by=marked_by),
        )

    def unset_voted(self, account_id: str, contact_id: Any) -> bool:
        cid = _contact_id(contact_id)
        pg = self._pg
        return self._dispatcher.run(
            "unset_voted",
            relational=None if pg is None else lambda: pg.unset_voted(account_id=account_id, contact_id=cid),
            document=lambda: self._voted.unset_voted(account_id=account_id, contact_id=cid),
        )

    def clear_all_voted(self, account_id: str) -> int:
        pg = self._pg
        cleared = self._dispatcher.run(
            "clear_all_voted",
            relational=None if pg is None else lambda: pg.clear_all(account_id=account_id),
            document=lambda: self._voted.clear_all(account_id=account_id),
        )
        logger.info("voted_tally_cleared account_id=%s count=%s", account_id, cleared)
        return cleared

    def is_contact_voted(self, account_id: str, contact_id: Any) -> bool:
        cid = _contact_id(contact_id)
        pg = self._pg
        return self._dispatcher.run(
            "is_contact_voted",
            relational=None if pg is None else lambda: pg.is_voted(account_id=account_id, contact_id=cid),
            document=lambda: self._voted.is_voted(account_id=account_id, contact_id=cid),
        )

    def get_voted_contact_ids(self, account_id: str) -> list[str]:
        pg = self._pg
        return self._dispatcher.run(
            "get_voted_contact_ids",
            relational=None if pg is None else lambda: pg.contact_ids(account_id=account_id),
            document=lambda: self._voted.contact_ids(account_id=account_id),
        )


def _percent(part: int, whole: int) -> int:
    return round_half_up(part / whole * 100)


def project_outcome(by_category: dict[str, int], total_voted: int) -> dict[str, Any] | None:
    if total_voted == 0:
        return None
    support = by_category["strong_support"] + by_category["likely_support"]
    oppose = by_category["strong_oppose"] + by_category["likely_oppose"]
    return {
        "support_pct": _percent(support, total_voted),
        "oppose_pct": _percent(oppose, total_voted),
        "undecided_pct": _percent(by_category["undecided"], total_voted),
        "unknown_pct": _percent(by_category["unknown"], total_voted),
        "likely_win": support > oppose,
    }


class TallyEngine:
    """Running support histogram over voted contacts.

    Each voted contact lands in exactly one bucket: the interaction-derived
    category when one exists, else the first contact tag that maps to a bucket,
    else ``unknown``.
    """

    def __init__(
        self,
        *,
        voted: VotedTally,
        interactions: InteractionAggregator,
        contacts_for_account: Callable[[str], list[dict[str, Any]]],
    ) -> None:
        self._voted = voted
        self._interactions = interactions
        self._contacts_for_account = contacts_for_account

    def get_tally(
        self,
        account_id: str,
        get_account_contacts: AccountContactsProvider | None = None,
    ) -> dict[str, Any]:
        voted_ids = [str(x) for x in self._voted.get_voted_contact_ids(account_id)]
        by_category = empty_histogram()
        total_voted = len(voted_ids)
        if total_voted == 0:
            return {"total_voted": 0, "by_category": by_category, "projected_outcome": None}

        from_interactions = self._interactions.get_support_categories_for_contacts(account_id, voted_ids)
        if get_account_contacts is None:
            contacts = self._contacts_for_account(account_id)
        else:
            contacts = get_account_contacts()
        contact_map = {str(x.get("id")): x for x in contacts or [] if isinstance(x, dict)}

        for contact_id in voted_ids:
            bucket = from_interactions.get(contact_id, "unknown")
            if bucket == "unknown":
                contact = contact_map.get(contact_id)
                if contact is not None:
                    bucket = category_from_tags(contact.get("categories")) or "unknown"
            by_category[bucket if bucket in by_category else "unknown"] += 1

        return {
            "total_voted": total_voted,
            "by_category": by_category,
            "projected_outcome": project_outcome(by_category, total_voted),
        }
