from __future__ import annotations

import pytest

from election_core.support import (
    category_from_tag,
    category_from_tags,
    empty_histogram,
    mean_score,
    round_half_up,
    support_category_for_score,
)


@pytest.mark.parametrize(
    ("score", "expected"),
    [
        (100, "strong_support"),
        (80, "strong_support"),
        (79, "likely_support"),
        (60, "likely_support"),
        (59, "undecided"),
        (40, "undecided"),
        (39, "likely_oppose"),
        (20, "likely_oppose"),
        (19, "strong_oppose"),
        (0, "strong_oppose"),
        (None, "unknown"),
    ],
)
def test_support_category_boundaries(score, expected):
    assert support_category_for_score(score) == expected


def test_mean_score_rounds_half_up_and_skips_unscored():
    assert mean_score([79, 80]) == 80
    assert mean_score([59, 60, None]) == 60
    assert mean_score([None, None]) is None
    assert mean_score([]) is None
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2


@pytest.mark.parametrize(
    ("tag", "expected"),
    [
        ("Strong Support", "strong_support"),
        ("supporter", "likely_support"),
        ("Donor", "likely_support"),
        ("Board Member", "likely_support"),
        ("Liberal", "likely_oppose"),
        ("non-supporter", "likely_oppose"),
        ("opposed", "strong_oppose"),
        ("likely_oppose", "strong_oppose"),
        ("Undecided", "undecided"),
        ("bbq guest", None),
        ("", None),
        (None, None),
    ],
)
def test_category_from_tag(tag, expected):
    assert category_from_tag(tag) == expected


def test_category_from_tags_first_mapped_tag_wins():
    assert category_from_tags(["bbq guest", "volunteer", "ndp"]) == "likely_support"
    assert category_from_tags(["bbq guest"]) is None
    assert category_from_tags(None) is None


def test_empty_histogram_has_every_bucket():
    histogram = empty_histogram()
    assert set(histogram) == {
        "strong_support",
        "likely_support",
        "undecided",
        "likely_oppose",
        "strong_oppose",
        "unknown",
    }
    assert sum(histogram.values()) == 0
