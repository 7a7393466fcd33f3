import json
import pathlib
import sys
from typing import Any

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from election_core.backends import BackendDispatcher
from election_core.runtime_profile import BackendProfile
from election_core.store import ElectionStore
from election_core.store_interactions import InteractionAggregator
from election_core.support import mean_score

ACCOUNT = "acct_1"

CONTACTS: list[dict[str, Any]] = [
    {
        "id": "c1",
        "firstName": "Ada",
        "lastName": "Lovelace",
        "city": "Toronto",
        "province": "ON",
        "pollNumber": "101",
        "riding": "R1",
        "categories": ["Supporter", "donor"],
        "createdAt": "2026-01-01T00:00:00Z",
    },
    {
        "id": "c2",
        "firstName": "Ben",
        "lastName": "Ng",
        "city": "toronto",
        "province": "ON",
        "pollNumber": "101",
        "riding": "R1",
        "categories": ["Liberal"],
        "createdAt": "2026-01-02T00:00:00Z",
    },
    {
        "id": "c3",
        "name": "Cy Doe",
        "city": "Ottawa",
        "province": "ON",
        "pollNumber": "102",
        "riding": "R2",
        "category": "volunteer",
        "createdAt": "2026-01-03T00:00:00Z",
    },
    {
        "id": "c4",
        "firstName": "Dee",
        "city": "Toronto",
        "province": "ON",
        "pollNumber": "101",
        "riding": "R1",
        "categories": ["undecided"],
        "deleted": True,
        "createdAt": "2026-01-04T00:00:00Z",
    },
    {
        "id": "c5",
        "firstName": "Eve",
        "city": "Calgary",
        "province": "AB",
        "pollNumber": "201",
        "riding": "R9",
        "categories": [],
        "createdAt": "2026-01-05T00:00:00Z",
    },
]


class FakeInteractionsRepository:
    """In-memory stand-in for PostgresInteractionsRepository."""

    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []

    def append(self, *, account_id: str, interaction: dict[str, Any]) -> dict[str, Any]:
        row = dict(interaction)
        row.update(
            {
                "id": len(self.rows) + 1,
                "account_id": account_id,
                "created_at": f"2026-10-01T00:00:{len(self.rows):02d}+00:00",
                "created_by": interaction.get("user_id"),
            }
        )
        self.rows.append(row)
        return dict(row)

    def _for(self, account_id: str, contact_id: str) -> list[dict[str, Any]]:
        return [x for x in self.rows if x["account_id"] == account_id and x["contact_id"] == contact_id]

    def score_stats(self, *, account_id: str, contact_id: str) -> dict[str, Any]:
        scored = [x for x in self._for(account_id, contact_id) if x.get("support_likelihood") is not None]
        scores = [x["support_likelihood"] for x in scored]
        return {
            "average_score": mean_score(scores),
            "interaction_count": len(scored),
            "last_interaction_at": max((x["created_at"] for x in scored), default=None),
            "highest_score": max(scores, default=None),
            "lowest_score": min(scores, default=None),
        }

    def average_scores(self, *, account_id: str, contact_ids: list[str]) -> dict[str, int]:
        out: dict[str, int] = {}
        for contact_id in contact_ids:
            score = self.score_stats(account_id=account_id, contact_id=contact_id)["average_score"]
            if score is not None:
                out[contact_id] = score
        return out

    def list_for_contact(self, *, account_id: str, contact_id: str, limit: int | None = None, **_: Any):
        rows = sorted(self._for(account_id, contact_id), key=lambda x: x["created_at"], reverse=True)
        return rows[:limit] if limit is not None else rows

    def statistics(self, *, account_id: str, start_date=None, end_date=None) -> dict[str, Any]:
        rows = [x for x in self.rows if x["account_id"] == account_id]
        return {
            "overall": {
                "total_interactions": len(rows),
                "unique_contacts": len({x["contact_id"] for x in rows}),
                "average_support_score": mean_score(x.get("support_likelihood") for x in rows),
            },
            "by_type": [],
        }


@pytest.fixture
def data_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    return tmp_path / "shared-data"


@pytest.fixture
def write_contacts(data_dir: pathlib.Path):
    def _write(account_id: str, contacts: list[dict[str, Any]]) -> None:
        path = data_dir / account_id / "contacts.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(contacts), encoding="utf-8")

    return _write


@pytest.fixture
def json_store(data_dir: pathlib.Path, write_contacts) -> ElectionStore:
    write_contacts(ACCOUNT, CONTACTS)
    return ElectionStore(BackendProfile(data_backend="json", data_dir=str(data_dir)))


@pytest.fixture
def ready_profile(data_dir: pathlib.Path) -> BackendProfile:
    profile = BackendProfile(data_backend="pg", dsn="postgresql://test", data_dir=str(data_dir))
    profile.mark_ready()
    return profile


@pytest.fixture
def fake_interactions() -> FakeInteractionsRepository:
    return FakeInteractionsRepository()


@pytest.fixture
def aggregator(ready_profile: BackendProfile, fake_interactions: FakeInteractionsRepository) -> InteractionAggregator:
    return InteractionAggregator(
        dispatcher=BackendDispatcher(ready_profile, component="voter_interactions"),
        pg_interactions=fake_interactions,
    )
