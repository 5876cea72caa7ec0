"""Session token issue and verification."""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from services.shared import DeviceMismatchError, SessionExpiredError, Voter, utc_now

from .store import VoterStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

TOKEN_BYTES = 32


@dataclass(frozen=True)
class Session:
    token: str
    expires_at: datetime


class SessionManager:
    """
    One active session per voter, bound to the device it was issued to.

    Tokens come from ``secrets`` and expire after a fixed window. Issuing a
    new token replaces the old one; expiry is checked lazily on verify.
    """

    def __init__(self, store: VoterStore, ttl: timedelta, clock: Clock = utc_now):
        self.store = store
        self.ttl = ttl
        self.clock = clock

    async def issue(self, voter_id: str, signal: Optional[str] = None) -> Session:
        """
        Open a session for a voter.

        Args:
            voter_id: Voter the session belongs to
            signal: Device signal of the signing-in fingerprint; when given,
                later requests must present the same one
        """
        token = secrets.token_urlsafe(TOKEN_BYTES)
        expires_at = self.clock() + self.ttl
        await self.store.set_session(voter_id, token, expires_at, signal)
        logger.info(f"Session issued for voter {voter_id}, expires {expires_at.isoformat()}")
        return Session(token=token, expires_at=expires_at)

    async def verify(
        self, institutional_email: str, token: str, signal: Optional[str] = None
    ) -> Voter:
        """
        Resolve a session token to its voter.

        Raises:
            SessionExpiredError: Unknown email, mismatched token or expired
            DeviceMismatchError: Session is bound to another device
        """
        if not institutional_email or not token:
            raise SessionExpiredError()

        email = institutional_email.strip().lower()
        voter = await self.store.find_active_session(email, token, self.clock())
        if voter is None:
            logger.info(f"Session verification failed for {email}")
            raise SessionExpiredError()
        if voter.session_signal is not None and voter.session_signal != signal:
            logger.warning(f"Session for {email} presented from a different device")
            raise DeviceMismatchError("Device mismatch. Please sign in again on this device.")
        return voter
