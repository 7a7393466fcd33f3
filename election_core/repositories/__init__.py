from election_core.repositories.contacts import JsonContactsRepository, PostgresContactsRepository
from election_core.repositories.election_lists import JsonElectionListsRepository, PostgresElectionListsRepository
from election_core.repositories.interactions import PostgresInteractionsRepository
from election_core.repositories.json_files import AccountJsonFiles
from election_core.repositories.poll_turnout import JsonPollTurnoutRepository, PostgresPollTurnoutRepository
from election_core.repositories.vote_marks import JsonVoteMarksRepository, PostgresVoteMarksRepository
from election_core.repositories.voted_tally import JsonVotedTallyRepository, PostgresVotedTallyRepository

__all__ = [
    "AccountJsonFiles",
    "JsonContactsRepository",
    "PostgresContactsRepository",
    "JsonElectionListsRepository",
    "PostgresElectionListsRepository",
    "PostgresInteractionsRepository",
    "JsonPollTurnoutRepository",
    "PostgresPollTurnoutRepository",
    "JsonVoteMarksRepository",
    "PostgresVoteMarksRepository",
    "JsonVotedTallyRepository",
    "PostgresVotedTallyRepository",
]
