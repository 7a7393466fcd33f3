from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Any

SUPPORT_CATEGORIES: tuple[str, ...] = (
    "strong_support",
    "likely_support",
    "undecided",
    "likely_oppose",
    "strong_oppose",
)
TALLY_CATEGORIES: tuple[str, ...] = SUPPORT_CATEGORIES + ("unknown",)

# Inclusive on both ends, applied to the rounded mean.
SUPPORT_CATEGORY_RANGES: dict[str, tuple[int, int]] = {
    "strong_support": (80, 100),
    "likely_support": (60, 79),
    "undecided": (40, 59),
    "likely_oppose": (20, 39),
    "strong_oppose": (0, 19),
}

# Order matters: oppose keywords win over support keywords.
_TAG_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("strong_oppose", ("strong_oppose", "strongoppose", "opposed", "oppose")),
    (
        "likely_oppose",
        ("likely_oppose", "likelyoppose", "non_supporter", "nonsupporter", "non-supporter", "liberal", "ndp", "green"),
    ),
    ("strong_support", ("strong_support", "strongsupport")),
    (
        "likely_support",
        ("likely_support", "likelysupport", "supporter", "member", "donor", "volunteer", "board", "lapsed"),
    ),
)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def mean_score(scores: Iterable[int | None]) -> int | None:
    values = [int(x) for x in scores if x is not None]
    if not values:
        return None
    return round_half_up(sum(values) / len(values))


def support_category_for_score(score: int | None) -> str:
    if score is None:
        return "unknown"
    if score >= 80:
        return "strong_support"
    if score >= 60:
        return "likely_support"
    if score >= 40:
        return "undecided"
    if score >= 20:
        return "likely_oppose"
    return "strong_oppose"


def category_from_tag(tag: Any) -> str | None:
    """Map a free-form contact tag onto a tally bucket, or None when nothing matches."""
    if not isinstance(tag, str) or not tag:
        return None
    raw = tag.lower()
    folded = "_".join(raw.split())
    for bucket, keywords in _TAG_RULES:
        if any(k in folded or k in raw for k in keywords):
            return bucket
    if folded == "undecided" or raw == "undecided":
        return "undecided"
    return None


def category_from_tags(tags: Iterable[Any] | None) -> str | None:
    for tag in tags or ():
        bucket = category_from_tag(tag)
        if bucket is not None:
            return bucket
    return None


def empty_histogram() -> dict[str, int]:
    return {name: 0 for name in TALLY_CATEGORIES}
