"""
Shared data models and utilities for the student voting system.

This module contains:
- Voter, Candidate, Ballot, CompletionRecord: the durable election records
- Fingerprint and Identity: the inputs produced at sign-in
- Signal hashing and timestamp helpers
"""

import hashlib
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class VoterStatus(str, Enum):
    """Lifecycle status of a voter record."""
    ACTIVE = "active"
    COMPLETED = "completed"
    INVALIDATED = "invalidated"


class SignalKind(str, Enum):
    """Kinds of fingerprint signals used for duplicate detection."""
    COMPOSITE = "composite"
    NETWORK = "network"
    DEVICE = "device"


@dataclass(frozen=True)
class Fingerprint:
    """
    Raw device/network signal supplied by the transport layer.

    Attributes:
        device_id: Client generated device identifier
        network: Remote address the request came from
        browser_signature: Browser fingerprint computed client side
    """
    device_id: Optional[str] = None
    network: Optional[str] = None
    browser_signature: Optional[str] = None


@dataclass(frozen=True)
class Identity:
    """Normalized, cross-validated sign-in credentials."""
    institutional_email: str
    personal_email: str
    matric_number: str
    full_name: str
    enrollment_year: str
    department: str


@dataclass(frozen=True)
class Candidate:
    """A contestant for one position."""
    id: str
    name: str
    position: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "position": self.position}


@dataclass
class Voter:
    """
    Identity record for one student.

    Attributes:
        id: Opaque voter identifier
        institutional_email: Canonical lower-case enrollment address
        personal_email: Lower-case personal address, unique across voters
        matric_number: Lower-case registration number
        full_name: Whitespace-normalized display name
        signals: Hashed fingerprint signals keyed by SignalKind value
        session_token: Current session token, if any
        session_expiry: When the current session token stops being valid
        session_signal: Device signal the current session was issued for
        voted_positions: Positions this voter has cast a ballot for
        votes: (position, candidate_id) pairs in casting order
        total_votes: Number of ballots cast in the current ballot set
        status: Lifecycle status
    """
    id: str
    institutional_email: str
    personal_email: str
    matric_number: str
    full_name: str
    signals: Dict[str, str] = field(default_factory=dict)
    session_token: Optional[str] = None
    session_expiry: Optional[datetime] = None
    session_signal: Optional[str] = None
    voted_positions: List[str] = field(default_factory=list)
    votes: List[Tuple[str, str]] = field(default_factory=list)
    total_votes: int = 0
    status: VoterStatus = VoterStatus.ACTIVE
    created_at: Optional[datetime] = None
    last_vote_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_identity(cls, identity: Identity, signals: Dict[str, str]) -> 'Voter':
        """Create a fresh active voter from validated credentials."""
        return cls(
            id=new_id(),
            institutional_email=identity.institutional_email,
            personal_email=identity.personal_email,
            matric_number=identity.matric_number,
            full_name=identity.full_name,
            signals=dict(signals),
            created_at=utc_now(),
        )

    def has_voted(self, position: str) -> bool:
        return position in self.voted_positions

    def copy(self) -> 'Voter':
        """Return a copy whose mutable collections are not shared."""
        return replace(
            self,
            signals=dict(self.signals),
            voted_positions=list(self.voted_positions),
            votes=list(self.votes),
        )


@dataclass
class Ballot:
    """One recorded vote for one candidate in one position."""
    id: str
    voter_id: str
    candidate_id: str
    position: str
    cast_at: datetime
    valid: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CompletionRecord:
    """Marks that a fingerprint signal has completed a full ballot set."""
    kind: str
    value: str
    voter_id: str
    completed_at: datetime


def new_id() -> str:
    """Generate an opaque record identifier."""
    return uuid.uuid4().hex


def hash_signal(*parts: str) -> str:
    """
    Hash fingerprint parts into a stable signal value.

    Raw device identifiers and addresses are never stored, only their
    SHA-256 digest.

    Args:
        *parts: Signal components, joined with '|'

    Returns:
        str: Hexadecimal SHA-256 hash
    """
    combined = "|".join(parts)
    return hashlib.sha256(combined.encode('utf-8')).hexdigest()


def utc_now() -> datetime:
    """Current timezone-aware UTC time."""
    return datetime.now(timezone.utc)
