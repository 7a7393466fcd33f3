from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from election_core.store_scrutineering import VoteMarkLedger
from election_core.store_segments import SegmentManager


def compare_filter_counts(
    segments: SegmentManager,
    *,
    account_id: str,
    filters: Mapping[str, Any],
) -> dict[str, Any]:
    """Count each named filter on both backends and report where they disagree.

    Filters that use interaction fields are reported but not compared, since the
    document backend ignores those fields.
    """
    rows: list[dict[str, Any]] = []
    mismatch: list[str] = []
    for name, filter_config in filters.items():
        counts = segments.count_on_each_backend(account_id, filter_config)
        comparable = counts["relational"] is not None and not counts["interaction_fields"]
        matched = counts["document"] == counts["relational"] if comparable else None
        if matched is False:
            mismatch.append(name)
        rows.append(
            {
                "filter": name,
                "matched": matched,
                "compared": comparable,
                "document_count": counts["document"],
                "relational_count": counts["relational"],
                "skipped_fields": counts["interaction_fields"],
            }
        )
    return {
        "all_matched": len(mismatch) == 0,
        "mismatch_filters": mismatch,
        "filters": rows,
    }


def check_turnout_consistency(ledger: VoteMarkLedger, *, account_id: str) -> dict[str, Any]:
    """Compare each poll's votes_cast with the number of vote marks logged for its key."""
    rows: list[dict[str, Any]] = []
    mismatch: list[str] = []
    for poll in ledger.get_poll_turnout(account_id):
        marks = ledger.count_marks_for_poll(
            account_id,
            poll["poll_number"],
            riding=poll.get("riding"),
            province=poll.get("province"),
        )
        votes_cast = int(poll.get("votes_cast") or 0)
        key = "|".join([str(poll["poll_number"]), poll.get("riding") or "", poll.get("province") or ""])
        matched = votes_cast == marks
        if not matched:
            mismatch.append(key)
        rows.append({"poll_key": key, "matched": matched, "votes_cast": votes_cast, "vote_marks": marks})
    return {
        "all_matched": len(mismatch) == 0,
        "mismatch_polls": mismatch,
        "polls": rows,
    }
