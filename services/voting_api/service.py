"""
Boundary operations of the voter-integrity core.

``ElectionService`` wires the components together and is what the HTTP
layer calls. Every collaborator is injected; ``build_service`` creates the
production ones from settings.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from services.shared import (
    AlreadyVotedError,
    Candidate,
    DuplicateIdentityError,
    Fingerprint,
    TransactionConflictError,
    Voter,
    VoterStatus,
    utc_now,
)

from .ballots import BallotTransaction
from .completion import CompletionGuard, CompletionResult
from .duplicate_guard import DetectionStrategy, DuplicateGuard, get_strategy
from .identity import IdentityValidator
from .redis_client import VoteRateLimiter
from .roster import StaticRoster
from .sessions import Clock, SessionManager
from .store import InMemoryStore, VoterStore
from .tally import Tally, TallyAggregator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignInResult:
    voter_id: str
    institutional_email: str
    session_token: str
    expires_at: datetime
    remaining_positions: List[str]
    continue_voting: bool


class ElectionService:
    """Sign-in, vote, completion and read operations."""

    def __init__(
        self,
        store: VoterStore,
        roster: StaticRoster,
        validator: IdentityValidator,
        strategy: DetectionStrategy,
        session_ttl: timedelta,
        clock: Clock = utc_now,
        rate_limiter: Optional[VoteRateLimiter] = None,
        max_retries: int = 5,
    ):
        self.store = store
        self.roster = roster
        self.validator = validator
        self.strategy = strategy
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries

        self.guard = DuplicateGuard(store, strategy)
        self.sessions = SessionManager(store, session_ttl, clock)
        self.ballots = BallotTransaction(
            store, roster, strategy, clock, rate_limiter=rate_limiter, max_retries=max_retries
        )
        self.completion = CompletionGuard(store, roster, self.guard, clock, max_retries=max_retries)
        self.aggregator = TallyAggregator(store, roster)

    @classmethod
    def from_settings(
        cls,
        settings,
        store: VoterStore,
        roster: Optional[StaticRoster] = None,
        rate_limiter: Optional[VoteRateLimiter] = None,
        clock: Clock = utc_now,
    ) -> 'ElectionService':
        return cls(
            store=store,
            roster=roster or StaticRoster.from_settings(settings),
            validator=IdentityValidator.from_settings(settings),
            strategy=get_strategy(settings.DETECTION_STRATEGY),
            session_ttl=timedelta(minutes=settings.SESSION_TTL_MINUTES),
            clock=clock,
            rate_limiter=rate_limiter,
            max_retries=settings.TX_MAX_RETRIES,
        )

    async def sign_in(
        self,
        institutional_email: str,
        personal_email: str,
        matric_number: str,
        full_name: str,
        fingerprint: Optional[Fingerprint],
    ) -> SignInResult:
        """
        Authenticate a student and open a voting session.

        New students get a voter record; returning students resume their
        ballot set. Uniqueness is enforced by the store's atomic inserts; when
        one rejects us the checks run again to report the right reason.

        Raises:
            ValidationError: Malformed credentials or missing fingerprint
            DuplicateIdentityError: Personal email belongs to someone else
            DuplicateDeviceError: Device already bound to another voter
            DuplicateNetworkError: Network already bound to another voter
            AlreadyVotedError: Voter already completed
        """
        identity = self.validator.validate(
            institutional_email, personal_email, matric_number, full_name
        )
        signals = self.strategy.require_signals(fingerprint)
        logger.info(f"Sign-in attempt for {identity.institutional_email}")

        voter: Optional[Voter] = None
        returning = False
        for attempt in range(1, self.max_retries + 1):
            voter = await self.store.find_voter_by_email(identity.institutional_email)
            returning = voter is not None
            if voter is not None:
                if voter.status == VoterStatus.COMPLETED:
                    logger.info(f"{identity.institutional_email} has already completed voting")
                    raise AlreadyVotedError("You have already voted.")
                if voter.personal_email != identity.personal_email:
                    raise DuplicateIdentityError(
                        "Personal email does not match the one registered for this student.",
                        field="personal_email",
                    )

            decision = await self.guard.check_sign_in(
                identity, signals, voter.id if voter else None
            )
            decision.raise_if_blocked()

            if voter is None:
                voter = Voter.from_identity(identity, signals)
                rejected = await self.store.register_voter(voter)
                if rejected is None:
                    logger.info(f"New voter created: {identity.institutional_email}")
                    break
            else:
                rejected = await self.store.bind_signals(voter.id, signals)
                if rejected is None:
                    break

            logger.info(
                f"Sign-in for {identity.institutional_email} lost a race on {rejected} "
                f"(attempt {attempt}/{self.max_retries}), re-checking"
            )
        else:
            raise TransactionConflictError("Too many concurrent sign-ins, please retry")

        session = await self.sessions.issue(voter.id, self.strategy.session_signal(fingerprint))
        remaining = [p for p in self.roster.positions() if not voter.has_voted(p)]
        return SignInResult(
            voter_id=voter.id,
            institutional_email=voter.institutional_email,
            session_token=session.token,
            expires_at=session.expires_at,
            remaining_positions=remaining,
            continue_voting=returning,
        )

    async def cast_vote(
        self,
        session_token: str,
        institutional_email: str,
        candidate_id: str,
        position: str,
        fingerprint: Optional[Fingerprint] = None,
    ) -> Dict[str, str]:
        """
        Cast a ballot for the session's voter.

        The fingerprint must come from the device the session was issued
        to; it also feeds the per-network rate limit.
        """
        voter = await self.sessions.verify(
            institutional_email, session_token, self.strategy.session_signal(fingerprint)
        )
        ballot = await self.ballots.cast(voter.id, candidate_id, position, fingerprint)
        return {"position": ballot.position}

    async def complete_voting(
        self,
        session_token: str,
        institutional_email: str,
        fingerprint: Optional[Fingerprint],
    ) -> CompletionResult:
        voter = await self.sessions.verify(
            institutional_email, session_token, self.strategy.session_signal(fingerprint)
        )
        return await self.completion.complete(voter.id, fingerprint)

    def get_positions(self) -> List[str]:
        return self.roster.positions()

    def get_candidates(self, position: str) -> List[Candidate]:
        return self.roster.candidates(position)

    async def get_tally(self) -> Tally:
        return await self.aggregator.tally()

    async def health(self) -> Dict[str, str]:
        services = {}
        services["store"] = "connected" if await self.store.check_health() else "disconnected"
        if self.rate_limiter is not None:
            healthy = await self.rate_limiter.check_health()
            services["redis"] = "connected" if healthy else "disconnected"
        return services

    async def close(self):
        if self.rate_limiter is not None:
            await self.rate_limiter.close()
        await self.store.close()


async def build_service(settings) -> ElectionService:
    """Create and initialize the configured store, limiter and service."""
    if settings.STORE_BACKEND == "memory":
        store: VoterStore = InMemoryStore()
    elif settings.STORE_BACKEND == "postgres":
        from .database import PostgresStore
        store = PostgresStore(
            settings.postgres_dsn,
            min_size=settings.POSTGRES_POOL_MIN_SIZE,
            max_size=settings.POSTGRES_POOL_MAX_SIZE,
        )
    else:
        raise ValueError(f"Unknown STORE_BACKEND '{settings.STORE_BACKEND}'")
    await store.initialize()

    rate_limiter = None
    if settings.VOTE_RATE_LIMIT > 0:
        rate_limiter = VoteRateLimiter.from_url(
            settings.redis_url, settings.VOTE_RATE_LIMIT, settings.VOTE_RATE_WINDOW_SECONDS
        )

    return ElectionService.from_settings(settings, store=store, rate_limiter=rate_limiter)
