"""Typed errors raised by the voter-integrity core."""

from typing import Any, Dict


class VotingError(Exception):
    """
    Base class for all voting errors.

    Attributes:
        code: Stable reason code surfaced to clients
        http_status: Status code the HTTP adapter answers with
        message: Human readable message
        details: Additional structured context
    """

    code = "voting_error"
    http_status = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(VotingError):
    """Malformed or inconsistent credential field."""

    code = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(message, field=field)
        self.field = field


class DuplicateVoterError(VotingError):
    """Fraud-prevention block."""

    code = "duplicate_voter"
    http_status = 403


class DuplicateIdentityError(DuplicateVoterError):
    code = "duplicate_identity"


class DuplicateDeviceError(DuplicateVoterError):
    code = "duplicate_device"


class DuplicateNetworkError(DuplicateVoterError):
    code = "duplicate_network"


class SessionExpiredError(VotingError):
    code = "session_expired"
    http_status = 401

    def __init__(self, message: str = "Session expired or invalid. Please sign in again."):
        super().__init__(message)


class DeviceMismatchError(VotingError):
    """Session presented from a device other than the one it was issued to."""

    code = "device_mismatch"
    http_status = 403


class AlreadyVotedError(VotingError):
    code = "already_voted"
    http_status = 409


class VoterNotFoundError(VotingError):
    code = "voter_not_found"
    http_status = 404


class CandidateNotFoundError(VotingError):
    code = "candidate_not_found"
    http_status = 404


class CandidateMismatchError(VotingError):
    code = "candidate_mismatch"


class RateLimitError(VotingError):
    code = "rate_limited"
    http_status = 429


class IncompleteBallotError(VotingError):
    code = "incomplete_ballot"


class DuplicateCompletionError(DuplicateVoterError):
    """Completion blocked; the voter's ballots have been invalidated."""

    code = "duplicate_completion"


class TransactionConflictError(VotingError):
    """Optimistic transaction kept losing; safe to retry."""

    code = "transaction_conflict"
    http_status = 409


class StoreUnavailableError(VotingError):
    code = "store_unavailable"
    http_status = 503
