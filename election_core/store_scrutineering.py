from __future__ import annotations

import logging
import re
import secrets
import string
import time
import uuid
from datetime import UTC, datetime
from typing import Any

from election_core.backends import BackendDispatcher
from election_core.errors import validation_error
from election_core.repositories.poll_turnout import JsonPollTurnoutRepository, PostgresPollTurnoutRepository
from election_core.repositories.vote_marks import JsonVoteMarksRepository, PostgresVoteMarksRepository
from election_core.schemas import POLL_NUMBER_PATTERN, VoteMarkQuery, VoteMarkRequest, parse_model

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase
_UNSET: Any = object()


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_verification_code(now_ms: int | None = None) -> str:
    """``V`` + base-36 millisecond timestamp + 4 random base-36 characters, uppercase and undashed."""
    stamp = int(time.time() * 1000) if now_ms is None else int(now_ms)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"V{_to_base36(stamp)}{suffix}"


def format_verification_code(code: str) -> str:
    """Display form with a dash every 4 characters."""
    raw = code.replace("-", "")
    return "-".join(raw[i : i + 4] for i in range(0, len(raw), 4))


def _turnout_percentage(votes_cast: int, total_voters: int) -> float:
    if total_voters <= 0:
        return 0
    return round(votes_cast / total_voters * 100, 2)


def _check_poll_number(poll_number: Any) -> str:
    if not isinstance(poll_number, str) or not re.fullmatch(POLL_NUMBER_PATTERN, poll_number.strip()):
        raise validation_error("INVALID_POLL_NUMBER", "poll_number must be 1-20 letters, digits, '-' or '_'")
    return poll_number.strip()


class VoteMarkLedger:
    """Append-only vote marks and the per-poll turnout counters they feed."""

    def __init__(
        self,
        *,
        dispatcher: BackendDispatcher,
        marks: JsonVoteMarksRepository,
        turnout: JsonPollTurnoutRepository,
        pg_marks: PostgresVoteMarksRepository | None = None,
        pg_turnout: PostgresPollTurnoutRepository | None = None,
        page_size: int = 100,
    ) -> None:
        self._dispatcher = dispatcher
        self._marks = marks
        self._turnout = turnout
        self._pg_marks = pg_marks
        self._pg_turnout = pg_turnout
        self._page_size = page_size

    def mark_vote(self, vote_data: Any) -> dict[str, Any]:
        request = parse_model(VoteMarkRequest, vote_data, default_code="INVALID_VOTE_MARK")
        account_id = request.account_id
        mark = {
            "id": f"vm_{uuid.uuid4().hex[:12]}",
            "account_id": account_id,
            "contact_id": request.contact_id,
            "poll_number": request.poll_number,
            "riding": request.riding,
            "province": request.province,
            "marked_by": request.marked_by,
            "verification_code": request.verification_code or generate_verification_code(),
            "notes": request.notes,
            "metadata": request.metadata,
            "marked_at": datetime.now(UTC).isoformat(),
        }
        pg = self._pg_marks
        stored = self._dispatcher.run_write(
            "mark_vote",
            relational=None if pg is None else lambda: pg.append(account_id=account_id, mark=mark),
            document=lambda: self._document_mark(account_id, mark),
        )
        logger.info(
            "vote_marked account_id=%s poll_number=%s verification_code=%s",
            account_id,
            stored["poll_number"],
            stored["verification_code"],
        )
        return stored

    def _document_mark(self, account_id: str, mark: dict[str, Any]) -> dict[str, Any]:
        # Two file writes; a crash between them leaves votes_cast one behind the log.
        stored = self._marks.append(account_id=account_id, mark=mark)
        self._turnout.increment(
            account_id=account_id,
            poll_number=mark["poll_number"],
            riding=mark["riding"],
            province=mark["province"],
            marked_by=mark["marked_by"],
        )
        return stored

    def get_vote_marks_by_poll(
        self,
        account_id: str,
        poll_number: str,
        riding: str | None = None,
        province: str | None = None,
    ) -> list[dict[str, Any]]:
        pg = self._pg_marks
        return self._dispatcher.run(
            "get_vote_marks_by_poll",
            relational=None
            if pg is None
            else lambda: pg.list_for_poll(account_id=account_id, poll_number=poll_number, riding=riding, province=province),
            document=lambda: self._marks.list_for_poll(
                account_id=account_id,
                poll_number=poll_number,
                riding=riding,
                province=province,
            ),
        )

    def get_vote_marks(
        self,
        account_id: str,
        poll_number: str | None = None,
        riding: str | None = None,
        province: str | None = None,
        marked_by: str | None = None,
        start_date: Any = None,
        end_date: Any = None,
        contact_search: str | None = None,
        limit: Any = _UNSET,
        offset: int = 0,
    ) -> dict[str, Any]:
        query = parse_model(
            VoteMarkQuery,
            {
                "poll_number": poll_number or None,
                "riding": riding or None,
                "province": province or None,
                "marked_by": marked_by or None,
                "start_date": start_date or None,
                "end_date": end_date or None,
                "contact_search": contact_search or None,
                "limit": self._page_size if limit is _UNSET or limit is None else limit,
                "offset": offset,
            },
            default_code="INVALID_VOTE_MARK_QUERY",
        )
        pg = self._pg_marks
        return self._dispatcher.run(
            "get_vote_marks",
            relational=None if pg is None else lambda: pg.query(account_id=account_id, query=query),
            document=lambda: self._marks.query(account_id=account_id, query=query),
        )

    def verify_vote_mark(self, account_id: str, verification_code: str) -> dict[str, Any] | None:
        code = (verification_code or "").strip()
        if not code:
            return None
        pg = self._pg_marks
        return self._dispatcher.run(
            "verify_vote_mark",
            relational=None if pg is None else lambda: pg.find_by_code(account_id=account_id, verification_code=code),
            document=lambda: self._marks.find_by_code(account_id=account_id, verification_code=code),
        )

    def get_poll_turnout(self, account_id: str, riding: str | None = None, province: str | None = None) -> list[dict[str, Any]]:
        pg = self._pg_turnout
        return self._dispatcher.run(
            "get_poll_turnout",
            relational=None if pg is None else lambda: pg.list_rows(account_id=account_id, riding=riding, province=province),
            document=lambda: self._turnout.list_rows(account_id=account_id, riding=riding, province=province),
        )

    def get_turnout_summary(
        self,
        account_id: str,
        riding: str | None = None,
        province: str | None = None,
    ) -> dict[str, Any]:
        polls = self.get_poll_turnout(account_id, riding=riding, province=province)
        total_voters = sum(int(x.get("total_voters") or 0) for x in polls)
        total_votes_cast = sum(int(x.get("votes_cast") or 0) for x in polls)
        return {
            "polls": polls,
            "totals": {
                "total_voters": total_voters,
                "total_votes_cast": total_votes_cast,
                "turnout_percentage": _turnout_percentage(total_votes_cast, total_voters),
            },
        }

    def get_poll_turnout_details(
        self,
        account_id: str,
        poll_number: str,
        riding: str | None = None,
        province: str | None = None,
    ) -> dict[str, Any] | None:
        """Turnout row for a poll plus its vote marks.

        Omitted riding or province match any value: the first matching turnout
        row is returned while vote_marks and vote_count cover every matching
        key, so vote_count can exceed that row's votes_cast. Pass the full key
        for an exact comparison.
        """
        pg = self._pg_turnout
        turnout = self._dispatcher.run(
            "get_poll_turnout_details",
            relational=None
            if pg is None
            else lambda: pg.find(account_id=account_id, poll_number=poll_number, riding=riding, province=province),
            document=lambda: self._turnout.find(
                account_id=account_id,
                poll_number=poll_number,
                riding=riding,
                province=province,
            ),
        )
        if turnout is None:
            return None
        vote_marks = self.get_vote_marks_by_poll(account_id, poll_number, riding=riding, province=province)
        details = dict(turnout)
        details["vote_marks"] = vote_marks
        details["vote_count"] = len(vote_marks)
        details["turnout_percentage"] = _turnout_percentage(
            int(turnout.get("votes_cast") or 0),
            int(turnout.get("total_voters") or 0),
        )
        return details

    def set_poll_total_voters(
        self,
        account_id: str,
        poll_number: str,
        riding: str | None = None,
        province: str | None = None,
        total_voters: int = 0,
        updated_by: str | None = None,
    ) -> dict[str, Any]:
        """Record the external electors count for a poll; votes_cast is left untouched."""
        poll = _check_poll_number(poll_number)
        if isinstance(total_voters, bool) or not isinstance(total_voters, int) or total_voters < 0:
            raise validation_error("INVALID_TOTAL_VOTERS", "total_voters must be a non-negative integer")
        pg = self._pg_turnout
        row = self._dispatcher.run_write(
            "set_poll_total_voters",
            relational=None
            if pg is None
            else lambda: pg.set_total_voters(
                account_id=account_id,
                poll_number=poll,
                riding=riding or None,
                province=province or None,
                total_voters=total_voters,
                updated_by=updated_by,
            ),
            document=lambda: self._turnout.set_total_voters(
                account_id=account_id,
                poll_number=poll,
                riding=riding or None,
                province=province or None,
                total_voters=total_voters,
                updated_by=updated_by,
            ),
        )
        logger.info(
            "poll_total_voters_set account_id=%s poll_number=%s total_voters=%s",
            account_id,
            poll,
            total_voters,
        )
        return row

    def count_marks_for_poll(
        self,
        account_id: str,
        poll_number: str,
        riding: str | None = None,
        province: str | None = None,
    ) -> int:
        """Exact-key mark count, the figure votes_cast must equal."""
        pg = self._pg_marks
        return self._dispatcher.run(
            "count_marks_for_poll",
            relational=None
            if pg is None
            else lambda: pg.count_for_poll(account_id=account_id, poll_number=poll_number, riding=riding, province=province),
            document=lambda: self._marks.count_for_poll(
                account_id=account_id,
                poll_number=poll_number,
                riding=riding,
                province=province,
            ),
        )
