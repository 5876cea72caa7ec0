"""
Shared utilities and models for the student voting system.

This package contains common code used by the voting services:
- Data models (Voter, Candidate, Ballot, CompletionRecord, enums)
- Signal hashing utilities
- Typed voting errors
"""

from .errors import (
    VotingError,
    ValidationError,
    DuplicateVoterError,
    DuplicateIdentityError,
    DuplicateDeviceError,
    DuplicateNetworkError,
    SessionExpiredError,
    DeviceMismatchError,
    AlreadyVotedError,
    VoterNotFoundError,
    CandidateNotFoundError,
    CandidateMismatchError,
    RateLimitError,
    IncompleteBallotError,
    DuplicateCompletionError,
    TransactionConflictError,
    StoreUnavailableError,
)
from .models import (
    Ballot,
    Candidate,
    CompletionRecord,
    Fingerprint,
    Identity,
    SignalKind,
    Voter,
    VoterStatus,
    hash_signal,
    new_id,
    utc_now,
)

__all__ = [
    'VotingError',
    'ValidationError',
    'DuplicateVoterError',
    'DuplicateIdentityError',
    'DuplicateDeviceError',
    'DuplicateNetworkError',
    'SessionExpiredError',
    'DeviceMismatchError',
    'AlreadyVotedError',
    'VoterNotFoundError',
    'CandidateNotFoundError',
    'CandidateMismatchError',
    'RateLimitError',
    'IncompleteBallotError',
    'DuplicateCompletionError',
    'TransactionConflictError',
    'StoreUnavailableError',
    'Ballot',
    'Candidate',
    'CompletionRecord',
    'Fingerprint',
    'Identity',
    'SignalKind',
    'Voter',
    'VoterStatus',
    'hash_signal',
    'new_id',
    'utc_now',
]

__version__ = '1.0.0'
