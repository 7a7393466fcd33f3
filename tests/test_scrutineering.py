from __future__ import annotations

import re

import pytest

from conftest import ACCOUNT
from election_core.backends import BackendDispatcher
from election_core.errors import ElectionError
from election_core.ops.backend_consistency import check_turnout_consistency
from election_core.repositories import JsonPollTurnoutRepository, JsonVoteMarksRepository
from election_core.repositories.json_files import AccountJsonFiles
from election_core.store_scrutineering import VoteMarkLedger, format_verification_code, generate_verification_code


def _vote(contact_id: str = "c1", **extra) -> dict:
    data = {
        "accountId": ACCOUNT,
        "contactId": contact_id,
        "pollNumber": "101",
        "riding": "R1",
        "province": "ON",
        "markedBy": "scrutineer_1",
    }
    data.update(extra)
    return data


def test_generate_verification_code_shape():
    code = generate_verification_code()
    assert re.fullmatch(r"V[0-9A-Z]{5,}", code)
    assert generate_verification_code(now_ms=0)[:2] == "V0"
    assert len(generate_verification_code(now_ms=35)) == 6
    assert generate_verification_code(now_ms=35)[1] == "Z"


def test_format_verification_code_groups_of_four():
    assert format_verification_code("VABCDEFGH1234") == "VABC-DEFG-H123-4"
    assert format_verification_code("VABC-DEFG") == "VABC-DEFG"


def test_mark_vote_twice_increments_turnout_and_issues_distinct_codes(json_store):
    ledger = json_store.ledger
    first = ledger.mark_vote(_vote())
    second = ledger.mark_vote(_vote())

    assert first["id"].startswith("vm_")
    assert first["verification_code"] != second["verification_code"]
    assert first["marked_by"] == "scrutineer_1"
    turnout = ledger.get_poll_turnout(ACCOUNT)
    assert len(turnout) == 1
    assert turnout[0]["votes_cast"] == 2
    assert turnout[0]["total_voters"] == 0
    assert len(ledger.get_vote_marks_by_poll(ACCOUNT, "101")) == 2


def test_mark_vote_keeps_supplied_code_and_validates(json_store):
    ledger = json_store.ledger
    stored = ledger.mark_vote(_vote(verificationCode="VCUSTOM0001", notes="assisted"))
    assert stored["verification_code"] == "VCUSTOM0001"
    assert stored["notes"] == "assisted"

    with pytest.raises(ElectionError) as bad_poll:
        ledger.mark_vote(_vote(pollNumber="poll 101"))
    assert bad_poll.value.code == "INVALID_POLL_NUMBER"
    with pytest.raises(ElectionError) as no_contact:
        ledger.mark_vote(_vote(contact_id=""))
    assert no_contact.value.code == "INVALID_CONTACT_ID"
    assert ledger.get_poll_turnout(ACCOUNT)[0]["votes_cast"] == 1


def test_verify_vote_mark_exact_match_within_account(json_store, write_contacts):
    ledger = json_store.ledger
    stored = ledger.mark_vote(_vote())
    code = stored["verification_code"]

    assert ledger.verify_vote_mark(ACCOUNT, code)["id"] == stored["id"]
    assert ledger.verify_vote_mark(ACCOUNT, f"  {code} ")["id"] == stored["id"]
    assert ledger.verify_vote_mark(ACCOUNT, code.lower()) is None
    assert ledger.verify_vote_mark(ACCOUNT, "") is None
    write_contacts("acct_2", [])
    assert ledger.verify_vote_mark("acct_2", code) is None


def test_get_vote_marks_filters_and_pages(json_store):
    ledger = json_store.ledger
    ledger.mark_vote(_vote("c1"))
    ledger.mark_vote(_vote("c2", markedBy="scrutineer_2"))
    ledger.mark_vote(_vote("c3", pollNumber="102"))

    everything = ledger.get_vote_marks(ACCOUNT)
    assert everything["total"] == 3
    assert everything["limit"] == 100
    assert everything["offset"] == 0

    assert ledger.get_vote_marks(ACCOUNT, poll_number="102")["total"] == 1
    assert ledger.get_vote_marks(ACCOUNT, marked_by="scrutineer_2")["total"] == 1
    assert ledger.get_vote_marks(ACCOUNT, contact_search="C2")["total"] == 1

    page = ledger.get_vote_marks(ACCOUNT, limit=2)
    assert len(page["vote_marks"]) == 2
    assert page["has_more"] is True

    with pytest.raises(ElectionError) as exc:
        ledger.get_vote_marks(ACCOUNT, limit=0)
    assert exc.value.code == "INVALID_PAGINATION"
    with pytest.raises(ElectionError) as dates:
        ledger.get_vote_marks(ACCOUNT, start_date="not-a-date")
    assert dates.value.code == "INVALID_DATE_RANGE"


def test_turnout_summary_and_details(json_store):
    ledger = json_store.ledger
    ledger.mark_vote(_vote("c1"))
    ledger.mark_vote(_vote("c2"))
    ledger.set_poll_total_voters(ACCOUNT, "101", riding="R1", province="ON", total_voters=10, updated_by="admin")
    ledger.set_poll_total_voters(ACCOUNT, "102", riding="R2", province="ON", total_voters=30)

    summary = ledger.get_turnout_summary(ACCOUNT)
    assert summary["totals"] == {"total_voters": 40, "total_votes_cast": 2, "turnout_percentage": 5.0}
    assert len(summary["polls"]) == 2
    assert ledger.get_turnout_summary(ACCOUNT, riding="R1")["totals"]["turnout_percentage"] == 20.0

    details = ledger.get_poll_turnout_details(ACCOUNT, "101")
    assert details["votes_cast"] == 2
    assert details["vote_count"] == 2
    assert details["turnout_percentage"] == 20.0
    assert details["updated_by"] == "admin"
    assert ledger.get_poll_turnout_details(ACCOUNT, "999") is None


def test_set_poll_total_voters_keeps_votes_cast(json_store):
    ledger = json_store.ledger
    ledger.mark_vote(_vote())
    row = ledger.set_poll_total_voters(ACCOUNT, "101", riding="R1", province="ON", total_voters=400)
    assert row["votes_cast"] == 1
    assert row["total_voters"] == 400

    fresh = ledger.set_poll_total_voters(ACCOUNT, "300", total_voters=50)
    assert fresh["votes_cast"] == 0
    assert fresh["riding"] is None


@pytest.mark.parametrize(
    ("poll_number", "total_voters", "code"),
    [
        ("bad poll", 10, "INVALID_POLL_NUMBER"),
        ("101", -1, "INVALID_TOTAL_VOTERS"),
        ("101", "10", "INVALID_TOTAL_VOTERS"),
    ],
)
def test_set_poll_total_voters_validation(json_store, poll_number, total_voters, code):
    with pytest.raises(ElectionError) as exc:
        json_store.ledger.set_poll_total_voters(ACCOUNT, poll_number, total_voters=total_voters)
    assert exc.value.code == code


def test_empty_summary_has_zero_percentage(json_store):
    summary = json_store.ledger.get_turnout_summary(ACCOUNT)
    assert summary == {"polls": [], "totals": {"total_voters": 0, "total_votes_cast": 0, "turnout_percentage": 0}}


def test_turnout_consistency_detects_drift(json_store):
    ledger = json_store.ledger
    ledger.mark_vote(_vote("c1"))
    ledger.mark_vote(_vote("c2"))
    ledger.mark_vote(_vote("c5", pollNumber="201", riding=None, province=None))

    report = check_turnout_consistency(ledger, account_id=ACCOUNT)
    assert report["all_matched"] is True
    assert {x["poll_key"] for x in report["polls"]} == {"101|R1|ON", "201||"}

    def _drift(rows):
        for row in rows:
            if row["poll_number"] == "101":
                row["votes_cast"] = 5

    json_store.files.update(account_id=ACCOUNT, entity="poll_turnout", fn=_drift)
    drifted = check_turnout_consistency(ledger, account_id=ACCOUNT)
    assert drifted["all_matched"] is False
    assert drifted["mismatch_polls"] == ["101|R1|ON"]


def test_mark_vote_does_not_fall_back_when_relational_write_fails(ready_profile, tmp_path):
    files = AccountJsonFiles(tmp_path)

    class BrokenMarks:
        def append(self, *, account_id, mark):
            raise ConnectionError("connection refused")

    ledger = VoteMarkLedger(
        dispatcher=BackendDispatcher(ready_profile, component="scrutineering"),
        marks=JsonVoteMarksRepository(files=files),
        turnout=JsonPollTurnoutRepository(files=files),
        pg_marks=BrokenMarks(),
    )
    with pytest.raises(ConnectionError):
        ledger.mark_vote(_vote())
    assert files.read(account_id=ACCOUNT, entity="vote_marks") == []
    assert files.read(account_id=ACCOUNT, entity="poll_turnout") == []


def test_mark_vote_rejects_reused_verification_code(json_store):
    ledger = json_store.ledger
    first = ledger.mark_vote(_vote("c1", verificationCode="VDUP1"))
    with pytest.raises(ElectionError) as exc:
        ledger.mark_vote(_vote("c2", verificationCode="VDUP1"))
    assert exc.value.code == "DUPLICATE_VERIFICATION_CODE"
    assert exc.value.http_status == 400

    assert ledger.verify_vote_mark(ACCOUNT, "VDUP1")["id"] == first["id"]
    assert ledger.get_vote_marks(ACCOUNT)["total"] == 1
    assert ledger.get_poll_turnout(ACCOUNT)[0]["votes_cast"] == 1
    assert check_turnout_consistency(ledger, account_id=ACCOUNT)["all_matched"] is True


def test_poll_details_without_riding_count_marks_across_ridings(json_store):
    ledger = json_store.ledger
    ledger.mark_vote(_vote("c1", riding="R1"))
    ledger.mark_vote(_vote("c2", riding="R2"))

    loose = ledger.get_poll_turnout_details(ACCOUNT, "101")
    assert loose["votes_cast"] == 1
    assert loose["vote_count"] == 2

    exact = ledger.get_poll_turnout_details(ACCOUNT, "101", riding="R2", province="ON")
    assert exact["votes_cast"] == exact["vote_count"] == 1
