"""
Optimistic per-voter transaction runner.

A transaction body reads a ``VoterSnapshot`` and returns either ``Commit``
(the change to write plus the value to hand back) or ``Abort`` (the error
to surface, nothing written). The runner commits against the snapshot
version and re-runs the body when another writer got there first.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from services.shared import TransactionConflictError, VoterNotFoundError, VotingError

from .store import VoterChange, VoterSnapshot, VoterStore

logger = logging.getLogger(__name__)


@dataclass
class Commit:
    change: VoterChange
    value: Any = None


@dataclass
class Abort:
    error: VotingError


Outcome = Union[Commit, Abort]
TransactionBody = Callable[[VoterSnapshot], Awaitable[Outcome]]


async def run_voter_transaction(
    store: VoterStore,
    voter_id: str,
    body: TransactionBody,
    max_retries: int = 5,
) -> Outcome:
    """
    Run ``body`` against the voter until it commits or aborts.

    Args:
        store: Voter store
        voter_id: Voter whose record is the serialization point
        body: Transaction body
        max_retries: Attempts before giving up

    Returns:
        The committed ``Commit`` or the body's ``Abort``

    Raises:
        TransactionConflictError: Every attempt lost to a concurrent writer
    """
    for attempt in range(1, max_retries + 1):
        snapshot = await store.load_voter(voter_id)
        if snapshot is None:
            return Abort(VoterNotFoundError(f"Voter {voter_id} not found"))

        outcome = await body(snapshot)
        if isinstance(outcome, Abort):
            return outcome

        if await store.commit(snapshot, outcome.change):
            return outcome

        logger.info(
            f"Transaction conflict on voter {voter_id} "
            f"(attempt {attempt}/{max_retries}), retrying"
        )

    logger.warning(f"Giving up on voter {voter_id} after {max_retries} conflicting attempts")
    raise TransactionConflictError(
        "Too many concurrent updates, please retry",
        attempts=max_retries,
    )
