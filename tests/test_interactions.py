from __future__ import annotations

import logging

import pytest

from conftest import ACCOUNT
from election_core.backends import BackendDispatcher
from election_core.errors import BackendUnavailableError, ElectionError
from election_core.runtime_profile import BackendProfile
from election_core.store_interactions import InteractionAggregator, neutral_support_score


def _interaction(contact_id: str = "c1", score: int | None = 70, **extra) -> dict:
    data = {
        "accountId": ACCOUNT,
        "contactId": contact_id,
        "userId": "canvasser_1",
        "interactionType": "door_knock",
        "interactionMethod": "in_person",
        "supportLikelihood": score,
    }
    data.update(extra)
    return data


def test_record_interaction_returns_stored_row_and_updated_score(aggregator, caplog):
    caplog.set_level(logging.INFO)
    first = aggregator.record_interaction(_interaction(score=79))
    second = aggregator.record_interaction(_interaction(score=80))

    assert first["created_by"] == "canvasser_1"
    assert first["contact_support_score"] == 79
    assert second["contact_support_score"] == 80
    assert any("interaction_recorded" in r.message for r in caplog.records)


def test_record_interaction_validation(aggregator):
    with pytest.raises(ElectionError) as exc:
        aggregator.record_interaction(_interaction(score=101))
    assert exc.value.code == "INVALID_SUPPORT_SCORE"
    with pytest.raises(ElectionError) as method:
        aggregator.record_interaction(_interaction(interactionMethod="telepathy"))
    assert method.value.code == "INVALID_INTERACTION_METHOD"


def test_contact_support_score_ignores_unscored_interactions(aggregator):
    aggregator.record_interaction(_interaction(score=60))
    aggregator.record_interaction(_interaction(score=None))
    aggregator.record_interaction(_interaction(score=59))

    score = aggregator.get_contact_support_score(ACCOUNT, "c1")
    assert score["average_score"] == 60
    assert score["interaction_count"] == 2
    assert score["highest_score"] == 60
    assert score["lowest_score"] == 59
    assert score["support_category"] == "likely_support"


def test_contact_without_interactions_is_unknown(aggregator):
    score = aggregator.get_contact_support_score(ACCOUNT, "nobody")
    assert score["average_score"] is None
    assert score["support_category"] == "unknown"


def test_support_categories_for_contacts(aggregator):
    aggregator.record_interaction(_interaction("c1", 90))
    aggregator.record_interaction(_interaction("c2", 10))
    aggregator.record_interaction(_interaction("c3", None))

    categories = aggregator.get_support_categories_for_contacts(ACCOUNT, ["c1", "c2", "c3", "c4"])
    assert categories == {"c1": "strong_support", "c2": "strong_oppose"}
    assert aggregator.get_support_categories_for_contacts(ACCOUNT, []) == {}


def test_history_and_last_contact_info(aggregator):
    aggregator.record_interaction(_interaction(score=40))
    aggregator.record_interaction(_interaction(score=None, interactionType="phone_call", interactionMethod="phone"))

    history = aggregator.get_contact_interaction_history(ACCOUNT, "c1")
    assert [x["interaction_type"] for x in history] == ["phone_call", "door_knock"]

    last = aggregator.get_last_contact_info(ACCOUNT, "c1")
    assert last["method"] == "phone"
    assert last["type"] == "phone_call"
    assert last["support_likelihood"] is None
    assert aggregator.get_last_contact_info(ACCOUNT, "c9") is None


def test_history_rejects_bad_arguments(aggregator):
    with pytest.raises(ElectionError) as dates:
        aggregator.get_contact_interaction_history(ACCOUNT, "c1", start_date="last tuesday")
    assert dates.value.code == "INVALID_DATE_RANGE"
    with pytest.raises(ElectionError) as limit:
        aggregator.get_contact_interaction_history(ACCOUNT, "c1", limit=0)
    assert limit.value.code == "INVALID_PAGINATION"


def test_interaction_statistics(aggregator):
    aggregator.record_interaction(_interaction("c1", 80))
    aggregator.record_interaction(_interaction("c2", 41))
    stats = aggregator.get_interaction_statistics(ACCOUNT, start_date="2026-01-01T00:00:00Z")
    assert stats["overall"]["total_interactions"] == 2
    assert stats["overall"]["unique_contacts"] == 2
    assert stats["overall"]["average_support_score"] == 61


def test_without_relational_backend_reads_degrade_and_writes_raise(data_dir, caplog):
    aggregator = InteractionAggregator(
        dispatcher=BackendDispatcher(BackendProfile(data_dir=str(data_dir)), component="voter_interactions"),
    )
    assert aggregator.get_contact_support_score(ACCOUNT, "c1") == neutral_support_score()
    assert aggregator.get_support_categories_for_contacts(ACCOUNT, ["c1"]) == {}
    assert any("support_score_unavailable" in r.message for r in caplog.records)

    with pytest.raises(BackendUnavailableError) as exc:
        aggregator.record_interaction(_interaction())
    assert exc.value.retryable is True
    with pytest.raises(BackendUnavailableError):
        aggregator.get_contact_interaction_history(ACCOUNT, "c1")
    with pytest.raises(BackendUnavailableError):
        aggregator.get_interaction_statistics(ACCOUNT)


def test_score_lookup_degrades_when_relational_read_fails(ready_profile, caplog):
    class BrokenInteractions:
        def score_stats(self, *, account_id, contact_id):
            raise ConnectionError("connection reset")

    aggregator = InteractionAggregator(
        dispatcher=BackendDispatcher(ready_profile, component="voter_interactions"),
        pg_interactions=BrokenInteractions(),
    )
    assert aggregator.get_contact_support_score(ACCOUNT, "c1")["support_category"] == "unknown"
    assert any("ConnectionError" in r.message for r in caplog.records)
