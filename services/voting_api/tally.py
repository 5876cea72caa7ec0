"""Vote counts per candidate from valid ballots."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List

from services.shared import utc_now

from .roster import StaticRoster
from .store import VoterStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateTally:
    candidate_id: str
    name: str
    votes: int


@dataclass
class Tally:
    vote_counts: Dict[str, List[CandidateTally]] = field(default_factory=dict)
    total_valid_votes: int = 0
    computed_at: datetime = field(default_factory=utc_now)


class TallyAggregator:
    """Computes the tally straight from the store on every call."""

    def __init__(self, store: VoterStore, roster: StaticRoster):
        self.store = store
        self.roster = roster

    async def tally(self) -> Tally:
        """
        Count valid ballots per position and candidate.

        Every roster candidate appears, with zero when unvoted. Candidates
        are ordered by votes descending; ties keep roster order.
        """
        counts = await self.store.count_valid_ballots()

        result = Tally()
        for position in self.roster.positions():
            rows = [
                CandidateTally(
                    candidate_id=candidate.id,
                    name=candidate.name,
                    votes=counts.get((position, candidate.id), 0),
                )
                for candidate in self.roster.candidates(position)
            ]
            rows.sort(key=lambda row: row.votes, reverse=True)
            result.vote_counts[position] = rows
            result.total_valid_votes += sum(row.votes for row in rows)

        logger.debug(f"Tally computed: {result.total_valid_votes} valid votes")
        return result
