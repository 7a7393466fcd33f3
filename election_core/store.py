from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from election_core.backends import BackendDispatcher
from election_core.db.postgres import PostgresTxRunner
from election_core.db.schema import apply_schema
from election_core.ops.backend_consistency import check_turnout_consistency, compare_filter_counts
from election_core.repositories import (
    AccountJsonFiles,
    JsonContactsRepository,
    JsonElectionListsRepository,
    JsonPollTurnoutRepository,
    JsonVotedTallyRepository,
    JsonVoteMarksRepository,
    PostgresContactsRepository,
    PostgresElectionListsRepository,
    PostgresInteractionsRepository,
    PostgresPollTurnoutRepository,
    PostgresVotedTallyRepository,
    PostgresVoteMarksRepository,
)
from election_core.repositories.contacts import ContactsProvider
from election_core.runtime_profile import BackendProfile, create_profile_from_env
from election_core.store_interactions import InteractionAggregator
from election_core.store_scrutineering import VoteMarkLedger
from election_core.store_segments import SegmentManager
from election_core.store_tally import TallyEngine, VotedTally

logger = logging.getLogger(__name__)


class ElectionStore:
    """Wires every election component to one BackendProfile.

    Each store owns its profile, so two stores in one process can sit on
    different backends.
    """

    def __init__(
        self,
        profile: BackendProfile,
        *,
        get_account_contacts: ContactsProvider | None = None,
        tx_runner: Any | None = None,
    ) -> None:
        self.profile = profile
        self.files = AccountJsonFiles(profile.data_dir)
        if tx_runner is None and profile.relational_configured:
            tx_runner = PostgresTxRunner(profile.dsn)
        self._tx_runner = tx_runner

        pg = tx_runner is not None
        self._json_contacts = JsonContactsRepository(files=self.files, provider=get_account_contacts)
        self._pg_contacts = PostgresContactsRepository(tx_runner=tx_runner) if pg else None

        self.segments = SegmentManager(
            dispatcher=BackendDispatcher(profile, component="election_lists"),
            contacts=self._json_contacts,
            lists=JsonElectionListsRepository(files=self.files),
            pg_contacts=self._pg_contacts,
            pg_lists=PostgresElectionListsRepository(tx_runner=tx_runner) if pg else None,
            page_size=profile.page_size,
        )
        self.interactions = InteractionAggregator(
            dispatcher=BackendDispatcher(profile, component="voter_interactions"),
            pg_interactions=PostgresInteractionsRepository(tx_runner=tx_runner) if pg else None,
        )
        self.ledger = VoteMarkLedger(
            dispatcher=BackendDispatcher(profile, component="scrutineering"),
            marks=JsonVoteMarksRepository(files=self.files),
            turnout=JsonPollTurnoutRepository(files=self.files),
            pg_marks=PostgresVoteMarksRepository(tx_runner=tx_runner) if pg else None,
            pg_turnout=PostgresPollTurnoutRepository(tx_runner=tx_runner) if pg else None,
            page_size=profile.page_size,
        )
        self.voted = VotedTally(
            dispatcher=BackendDispatcher(profile, component="scrutineering_voted"),
            voted=JsonVotedTallyRepository(files=self.files),
            pg_voted=PostgresVotedTallyRepository(tx_runner=tx_runner) if pg else None,
        )
        self._contacts_dispatcher = BackendDispatcher(profile, component="contacts")
        self.tally = TallyEngine(
            voted=self.voted,
            interactions=self.interactions,
            contacts_for_account=self.get_account_contacts,
        )

    def initialize(self) -> bool:
        """Apply the schema when enabled and mark the relational backend ready.

        Returns the readiness flag. A failure is logged and leaves the document
        backend authoritative.
        """
        if self._tx_runner is None or not self.profile.relational_configured:
            self.profile.mark_unready()
            return False
        if self.profile.apply_schema:
            try:
                apply_schema(self._tx_runner)
            except Exception as exc:
                logger.error("relational_backend_setup_failed error=%s", f"{type(exc).__name__}: {exc}")
                self.profile.mark_unready()
                return False
        self.profile.mark_ready()
        logger.info("relational_backend_ready data_backend=%s", self.profile.data_backend)
        return True

    def is_active_backend_ready(self) -> bool:
        return self.profile.is_active_backend_ready()

    def get_account_contacts(self, account_id: str) -> list[dict[str, Any]]:
        """Contacts for the tally: relational when ready, else the CRM collaborator."""
        pg = self._pg_contacts
        return self._contacts_dispatcher.run(
            "get_account_contacts",
            relational=None if pg is None else lambda: pg.list_contacts(account_id=account_id),
            document=lambda: self._json_contacts.list_contacts(account_id=account_id),
        )

    def check_filter_parity(self, account_id: str, filters: Mapping[str, Any]) -> dict[str, Any]:
        """Operator check: count each named filter on both backends."""
        return compare_filter_counts(self.segments, account_id=account_id, filters=filters)

    def check_turnout_consistency(self, account_id: str) -> dict[str, Any]:
        """Operator check: votes_cast against the logged vote marks per poll key."""
        return check_turnout_consistency(self.ledger, account_id=account_id)


def create_store_from_env(
    environ: Mapping[str, str] | None = None,
    *,
    get_account_contacts: ContactsProvider | None = None,
) -> ElectionStore:
    profile = create_profile_from_env(environ)
    return ElectionStore(profile, get_account_contacts=get_account_contacts)
