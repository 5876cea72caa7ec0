"""Ballot-set finalization and fraud invalidation."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from services.shared import (
    AlreadyVotedError,
    CompletionRecord,
    DuplicateCompletionError,
    Fingerprint,
    IncompleteBallotError,
    Voter,
    VoterStatus,
)

from .duplicate_guard import Decision, DuplicateGuard
from .roster import StaticRoster
from .sessions import Clock
from .store import VoterChange, VoterSnapshot, VoterStore
from .transactions import Abort, Commit, run_voter_transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionResult:
    voter_id: str
    completed_at: datetime
    completed: bool = True


def invalidated_change(voter: Voter) -> VoterChange:
    """Change that voids a voter's ballot set and reopens voting."""
    reset = voter.copy()
    reset.voted_positions = []
    reset.votes = []
    reset.total_votes = 0
    reset.completed_at = None
    reset.status = VoterStatus.INVALIDATED
    return VoterChange(voter=reset, invalidate_ballots=True)


class CompletionGuard:
    """
    Finalizes a full ballot set.

    The duplicate check runs again here with the completion fingerprint.
    When it blocks, the voter's ballots are invalidated instead of the
    request failing outright.
    """

    def __init__(
        self,
        store: VoterStore,
        roster: StaticRoster,
        guard: DuplicateGuard,
        clock: Clock,
        max_retries: int = 5,
    ):
        self.store = store
        self.roster = roster
        self.guard = guard
        self.clock = clock
        self.max_retries = max_retries

    async def complete(self, voter_id: str, fingerprint: Optional[Fingerprint]) -> CompletionResult:
        """
        Mark a voter's ballot set complete.

        Raises:
            AlreadyVotedError: Voter already completed
            IncompleteBallotError: Some positions have no ballot yet
            DuplicateCompletionError: Fingerprint already used; ballots invalidated
        """
        signals = self.guard.strategy.require_signals(fingerprint)
        required = len(self.roster.positions())

        async def body(snapshot: VoterSnapshot):
            voter = snapshot.voter
            if voter.status == VoterStatus.COMPLETED:
                return Abort(AlreadyVotedError("You have already completed voting."))
            if len(voter.voted_positions) < required:
                return Abort(IncompleteBallotError(
                    "You have not completed voting for all positions",
                    voted=len(voter.voted_positions),
                    required=required,
                ))

            decision = await self.guard.check_completion(voter, signals)
            if not decision.allowed:
                return Commit(invalidated_change(voter), value=decision)

            now = self.clock()
            completed = voter.copy()
            completed.status = VoterStatus.COMPLETED
            completed.completed_at = now
            records = [
                CompletionRecord(kind=kind, value=value, voter_id=voter.id, completed_at=now)
                for kind, value in signals.items()
            ]
            return Commit(
                VoterChange(voter=completed, completion_records=records),
                value=CompletionResult(voter_id=voter.id, completed_at=now),
            )

        outcome = await run_voter_transaction(self.store, voter_id, body, self.max_retries)
        if isinstance(outcome, Abort):
            logger.info(f"Completion rejected for voter {voter_id}: {outcome.error.code}")
            raise outcome.error

        if isinstance(outcome.value, Decision):
            reason = outcome.value.error
            logger.warning(
                f"Votes invalidated for voter {voter_id}: duplicate {reason.code} at completion"
            )
            raise DuplicateCompletionError(
                "You have already voted.", reason=reason.code
            )

        logger.info(f"Voting completed for voter {voter_id}")
        return outcome.value

    async def invalidate(self, voter_id: str) -> Voter:
        """
        Void a voter's ballot set. Running it again leaves the same state.

        Returns:
            The voter as stored after invalidation
        """
        async def body(snapshot: VoterSnapshot):
            change = invalidated_change(snapshot.voter)
            return Commit(change, value=change.voter)

        outcome = await run_voter_transaction(self.store, voter_id, body, self.max_retries)
        if isinstance(outcome, Abort):
            raise outcome.error
        logger.warning(f"Votes invalidated for voter {voter_id}")
        return outcome.value
