"""At-most-once ballot casting."""
import logging
from typing import Optional

from services.shared import (
    AlreadyVotedError,
    Ballot,
    CandidateMismatchError,
    CandidateNotFoundError,
    Fingerprint,
    RateLimitError,
    SignalKind,
    VoterStatus,
    new_id,
)

from .duplicate_guard import DetectionStrategy
from .redis_client import VoteRateLimiter
from .roster import StaticRoster
from .sessions import Clock
from .store import VoterChange, VoterSnapshot, VoterStore
from .transactions import Abort, Commit, run_voter_transaction

logger = logging.getLogger(__name__)


class BallotTransaction:
    """
    Records one vote for one (voter, position) pair.

    The voter update and the ballot insert are one commit against the
    voter's version; a concurrent cast for the same position loses the
    compare-and-swap, re-reads, and sees the position already voted.

    A rate limit slot is reserved once inside the transaction body and
    released again when the ballot does not commit.
    """

    def __init__(
        self,
        store: VoterStore,
        roster: StaticRoster,
        strategy: DetectionStrategy,
        clock: Clock,
        rate_limiter: Optional[VoteRateLimiter] = None,
        max_retries: int = 5,
    ):
        self.store = store
        self.roster = roster
        self.strategy = strategy
        self.clock = clock
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries

    async def cast(
        self,
        voter_id: str,
        candidate_id: str,
        position: str,
        fingerprint: Optional[Fingerprint] = None,
    ) -> Ballot:
        """
        Cast a ballot.

        Args:
            voter_id: Voter casting the ballot
            candidate_id: Chosen candidate
            position: Position the ballot is for
            fingerprint: Transport fingerprint at cast time

        Returns:
            Ballot: The committed ballot

        Raises:
            AlreadyVotedError: Position already voted, or voting completed
            CandidateNotFoundError: Unknown candidate
            CandidateMismatchError: Candidate does not run for the position
            RateLimitError: Too many ballots from the network
            TransactionConflictError: Retries exhausted
        """
        signals = self.strategy.signals(fingerprint)
        network = signals.get(SignalKind.NETWORK.value) if self.strategy.per_vote_checks else None
        limited = bool(network and self.rate_limiter)
        reserved = False

        async def body(snapshot: VoterSnapshot):
            nonlocal reserved
            voter = snapshot.voter
            if voter.status == VoterStatus.COMPLETED:
                return Abort(AlreadyVotedError("You have already completed voting."))
            if voter.has_voted(position):
                return Abort(AlreadyVotedError(
                    f"You have already voted for {position}", position=position
                ))

            candidate = self.roster.get(candidate_id)
            if candidate is None:
                return Abort(CandidateNotFoundError(
                    f"Candidate {candidate_id} not found", candidate_id=candidate_id
                ))
            if candidate.position != position:
                return Abort(CandidateMismatchError(
                    f"Candidate {candidate_id} does not run for {position}",
                    candidate_id=candidate_id,
                    expected=position,
                    actual=candidate.position,
                ))

            if limited and not reserved:
                if not await self.rate_limiter.reserve(network):
                    return Abort(RateLimitError(
                        "Too many votes from this network, please try again later"
                    ))
                reserved = True

            now = self.clock()
            updated = voter.copy()
            updated.voted_positions.append(position)
            updated.votes.append((position, candidate_id))
            updated.total_votes += 1
            updated.last_vote_at = now
            updated.status = VoterStatus.ACTIVE

            ballot = Ballot(
                id=new_id(),
                voter_id=voter.id,
                candidate_id=candidate_id,
                position=position,
                cast_at=now,
                metadata={"strategy": self.strategy.name, "signals": signals},
            )
            return Commit(VoterChange(voter=updated, new_ballots=[ballot]), value=ballot)

        try:
            outcome = await run_voter_transaction(self.store, voter_id, body, self.max_retries)
        except BaseException:
            if reserved:
                await self.rate_limiter.release(network)
            raise

        if isinstance(outcome, Abort):
            if reserved:
                await self.rate_limiter.release(network)
            logger.info(
                f"Vote rejected for voter {voter_id} ({position} -> {candidate_id}): "
                f"{outcome.error.code}"
            )
            raise outcome.error

        logger.info(f"Vote recorded for voter {voter_id}: {position} -> {candidate_id}")
        return outcome.value
