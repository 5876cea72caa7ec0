"""
Persistence interface for the voter-integrity core, and an in-memory store.

Every component receives a ``VoterStore`` explicitly. Per-voter atomicity is
an optimistic compare-and-swap on the voter ``version``; cross-voter
uniqueness (emails, fingerprint bindings, completion records, one valid
ballot per position) is an atomic insert-if-absent inside the store.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from services.shared import Ballot, CompletionRecord, Voter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoterSnapshot:
    """A voter as read at ``version``."""
    voter: Voter
    version: int


@dataclass
class VoterChange:
    """
    Everything one committed transaction writes for a voter.

    Attributes:
        voter: Full new state of the voter record
        new_ballots: Ballots to insert
        invalidate_ballots: Flip every valid ballot of the voter to invalid
        completion_records: Completion records to insert
    """
    voter: Voter
    new_ballots: List[Ballot] = field(default_factory=list)
    invalidate_ballots: bool = False
    completion_records: List[CompletionRecord] = field(default_factory=list)


class VoterStore(ABC):
    """Store operations the core depends on."""

    async def initialize(self) -> None:
        """Prepare connections and schema."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def check_health(self) -> bool:
        ...

    @abstractmethod
    async def get_voter(self, voter_id: str) -> Optional[Voter]:
        ...

    @abstractmethod
    async def find_voter_by_email(self, institutional_email: str) -> Optional[Voter]:
        ...

    @abstractmethod
    async def find_voter_by_personal_email(self, personal_email: str) -> Optional[Voter]:
        ...

    @abstractmethod
    async def find_binding_owner(self, kind: str, value: str) -> Optional[str]:
        """Voter id a fingerprint signal is bound to."""

    @abstractmethod
    async def find_completion_owner(self, kind: str, value: str) -> Optional[str]:
        """Voter id that completed with a fingerprint signal."""

    @abstractmethod
    async def register_voter(self, voter: Voter) -> Optional[str]:
        """
        Insert a new voter and bind its signals atomically.

        Returns:
            None on success, otherwise the name of the uniqueness constraint
            that rejected the insert ("institutional_email", "personal_email"
            or a signal kind). Nothing is written on rejection.
        """

    @abstractmethod
    async def bind_signals(self, voter_id: str, signals: Dict[str, str]) -> Optional[str]:
        """
        Bind signals to an existing voter, insert-if-absent.

        Returns:
            None on success, otherwise the signal kind already bound to
            another voter. Nothing is written on rejection.
        """

    @abstractmethod
    async def set_session(
        self, voter_id: str, token: str, expiry: datetime, signal: Optional[str] = None
    ) -> None:
        """Replace the voter's session token and the device signal it is bound to."""

    @abstractmethod
    async def find_active_session(
        self, institutional_email: str, token: str, now: datetime
    ) -> Optional[Voter]:
        """Voter whose token matches and has not expired, in one read."""

    @abstractmethod
    async def load_voter(self, voter_id: str) -> Optional[VoterSnapshot]:
        ...

    @abstractmethod
    async def commit(self, snapshot: VoterSnapshot, change: VoterChange) -> bool:
        """
        Apply ``change`` if the voter is still at ``snapshot.version``.

        Completion records already held by the same voter are refreshed
        rather than rejected, so a voter can complete again after an
        invalidation.

        Returns:
            True when committed. False when the version moved on or a
            uniqueness constraint rejected part of the change; nothing is
            written in that case.
        """

    @abstractmethod
    async def list_ballots(self, voter_id: str) -> List[Ballot]:
        ...

    @abstractmethod
    async def count_valid_ballots(self) -> Dict[Tuple[str, str], int]:
        """Valid ballot counts keyed by (position, candidate_id)."""


class InMemoryStore(VoterStore):
    """
    Single-process store for tests and local runs.

    Reads yield to the event loop to behave like network I/O; every write
    runs without awaiting between its checks and its effects, which makes it
    atomic with respect to other tasks.
    """

    def __init__(self):
        self._voters: Dict[str, Voter] = {}
        self._versions: Dict[str, int] = {}
        self._by_email: Dict[str, str] = {}
        self._by_personal_email: Dict[str, str] = {}
        self._bindings: Dict[Tuple[str, str], str] = {}
        self._completions: Dict[Tuple[str, str], CompletionRecord] = {}
        self._ballots: Dict[str, Ballot] = {}
        self._valid_ballot_keys: Dict[Tuple[str, str], str] = {}

    async def check_health(self) -> bool:
        return True

    async def get_voter(self, voter_id: str) -> Optional[Voter]:
        await asyncio.sleep(0)
        voter = self._voters.get(voter_id)
        return voter.copy() if voter else None

    async def find_voter_by_email(self, institutional_email: str) -> Optional[Voter]:
        await asyncio.sleep(0)
        voter_id = self._by_email.get(institutional_email)
        return self._voters[voter_id].copy() if voter_id else None

    async def find_voter_by_personal_email(self, personal_email: str) -> Optional[Voter]:
        await asyncio.sleep(0)
        voter_id = self._by_personal_email.get(personal_email)
        return self._voters[voter_id].copy() if voter_id else None

    async def find_binding_owner(self, kind: str, value: str) -> Optional[str]:
        await asyncio.sleep(0)
        return self._bindings.get((kind, value))

    async def find_completion_owner(self, kind: str, value: str) -> Optional[str]:
        await asyncio.sleep(0)
        record = self._completions.get((kind, value))
        return record.voter_id if record else None

    async def register_voter(self, voter: Voter) -> Optional[str]:
        await asyncio.sleep(0)
        if voter.institutional_email in self._by_email:
            return "institutional_email"
        if voter.personal_email in self._by_personal_email:
            return "personal_email"
        for kind, value in voter.signals.items():
            if (kind, value) in self._bindings:
                return kind

        self._voters[voter.id] = voter.copy()
        self._versions[voter.id] = 0
        self._by_email[voter.institutional_email] = voter.id
        self._by_personal_email[voter.personal_email] = voter.id
        for kind, value in voter.signals.items():
            self._bindings[(kind, value)] = voter.id
        return None

    async def bind_signals(self, voter_id: str, signals: Dict[str, str]) -> Optional[str]:
        await asyncio.sleep(0)
        for kind, value in signals.items():
            owner = self._bindings.get((kind, value))
            if owner is not None and owner != voter_id:
                return kind

        voter = self._voters[voter_id]
        for kind, value in signals.items():
            self._bindings[(kind, value)] = voter_id
        voter.signals.update(signals)
        self._versions[voter_id] += 1
        return None

    async def set_session(
        self, voter_id: str, token: str, expiry: datetime, signal: Optional[str] = None
    ) -> None:
        await asyncio.sleep(0)
        voter = self._voters[voter_id]
        voter.session_token = token
        voter.session_expiry = expiry
        voter.session_signal = signal
        self._versions[voter_id] += 1

    async def find_active_session(
        self, institutional_email: str, token: str, now: datetime
    ) -> Optional[Voter]:
        await asyncio.sleep(0)
        voter_id = self._by_email.get(institutional_email)
        if voter_id is None:
            return None
        voter = self._voters[voter_id]
        if voter.session_token != token or voter.session_expiry is None:
            return None
        if voter.session_expiry <= now:
            return None
        return voter.copy()

    async def load_voter(self, voter_id: str) -> Optional[VoterSnapshot]:
        await asyncio.sleep(0)
        voter = self._voters.get(voter_id)
        if voter is None:
            return None
        return VoterSnapshot(voter=voter.copy(), version=self._versions[voter_id])

    async def commit(self, snapshot: VoterSnapshot, change: VoterChange) -> bool:
        voter_id = snapshot.voter.id
        if self._versions.get(voter_id) != snapshot.version:
            return False
        for ballot in change.new_ballots:
            if (ballot.voter_id, ballot.position) in self._valid_ballot_keys:
                if not change.invalidate_ballots:
                    return False
        for record in change.completion_records:
            existing = self._completions.get((record.kind, record.value))
            if existing is not None and existing.voter_id != record.voter_id:
                return False

        if change.invalidate_ballots:
            for key, ballot_id in list(self._valid_ballot_keys.items()):
                if key[0] == voter_id:
                    self._ballots[ballot_id].valid = False
                    del self._valid_ballot_keys[key]
        for ballot in change.new_ballots:
            self._ballots[ballot.id] = replace(ballot, metadata=dict(ballot.metadata))
            self._valid_ballot_keys[(ballot.voter_id, ballot.position)] = ballot.id
        for record in change.completion_records:
            self._completions[(record.kind, record.value)] = record

        self._voters[voter_id] = change.voter.copy()
        self._versions[voter_id] = snapshot.version + 1
        return True

    async def list_ballots(self, voter_id: str) -> List[Ballot]:
        await asyncio.sleep(0)
        return [
            replace(ballot)
            for ballot in self._ballots.values()
            if ballot.voter_id == voter_id
        ]

    async def count_valid_ballots(self) -> Dict[Tuple[str, str], int]:
        await asyncio.sleep(0)
        return dict(Counter(
            (ballot.position, ballot.candidate_id)
            for ballot in self._ballots.values()
            if ballot.valid
        ))
