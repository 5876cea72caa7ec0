"""
Duplicate-voter detection.

A ``DetectionStrategy`` turns the raw fingerprint supplied by the transport
layer into hashed signals; the ``DuplicateGuard`` checks those signals, and
the personal email, against what other voters already hold. The same guard
answers at sign-in and again at completion.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from services.shared import (
    DuplicateDeviceError,
    DuplicateIdentityError,
    DuplicateNetworkError,
    DuplicateVoterError,
    Fingerprint,
    Identity,
    SignalKind,
    ValidationError,
    Voter,
    hash_signal,
)

from .store import VoterStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    """Outcome of a duplicate check: allow, or block with a typed error."""
    error: Optional[DuplicateVoterError] = None

    @property
    def allowed(self) -> bool:
        return self.error is None

    @classmethod
    def allow(cls) -> 'Decision':
        return cls()

    @classmethod
    def block(cls, error: DuplicateVoterError) -> 'Decision':
        return cls(error=error)

    def raise_if_blocked(self) -> None:
        if self.error is not None:
            raise self.error


class DetectionStrategy:
    """
    Maps a fingerprint to signals.

    Subclasses set ``per_vote_checks`` when ballots should also be rate
    limited per network, and ``session_kind`` to the signal a session is
    bound to.
    """

    name = "base"
    per_vote_checks = False
    session_kind = SignalKind.COMPOSITE.value

    def signals(self, fingerprint: Optional[Fingerprint]) -> Dict[str, str]:
        raise NotImplementedError

    def session_signal(self, fingerprint: Optional[Fingerprint]) -> Optional[str]:
        return self.signals(fingerprint).get(self.session_kind)

    def require_signals(self, fingerprint: Optional[Fingerprint]) -> Dict[str, str]:
        """Signals for sign-in/completion; an empty fingerprint is rejected."""
        signals = self.signals(fingerprint)
        if not signals:
            raise ValidationError(
                "fingerprint",
                f"Device information required by the '{self.name}' detection strategy is missing",
            )
        return signals


class DeviceIdStrategy(DetectionStrategy):
    name = "device"

    def signals(self, fingerprint):
        if fingerprint is None or not fingerprint.device_id:
            return {}
        return {SignalKind.COMPOSITE.value: hash_signal("device", fingerprint.device_id)}


class NetworkStrategy(DetectionStrategy):
    name = "network"
    per_vote_checks = True
    session_kind = SignalKind.NETWORK.value

    def signals(self, fingerprint):
        if fingerprint is None or not fingerprint.network:
            return {}
        return {SignalKind.NETWORK.value: hash_signal("network", fingerprint.network)}


class BrowserFingerprintStrategy(DetectionStrategy):
    name = "browser"

    def signals(self, fingerprint):
        if fingerprint is None or not fingerprint.browser_signature:
            return {}
        return {SignalKind.COMPOSITE.value: hash_signal("browser", fingerprint.browser_signature)}


class CompositeStrategy(DetectionStrategy):
    """
    Device id + browser signature + network.

    The composite signal identifies the exact device on the exact network,
    the device signal the same device from any network.
    """

    name = "composite"
    per_vote_checks = True
    session_kind = SignalKind.DEVICE.value

    def signals(self, fingerprint):
        if fingerprint is None or not (fingerprint.device_id or fingerprint.browser_signature):
            return {}
        device = hash_signal(
            "device", fingerprint.device_id or "", fingerprint.browser_signature or ""
        )
        signals = {SignalKind.DEVICE.value: device}
        if fingerprint.network:
            signals[SignalKind.COMPOSITE.value] = hash_signal(device, fingerprint.network)
            signals[SignalKind.NETWORK.value] = hash_signal("network", fingerprint.network)
        else:
            signals[SignalKind.COMPOSITE.value] = device
        return signals


STRATEGIES = {
    strategy.name: strategy
    for strategy in (DeviceIdStrategy, NetworkStrategy, BrowserFingerprintStrategy, CompositeStrategy)
}


def get_strategy(name: str) -> DetectionStrategy:
    try:
        return STRATEGIES[name.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown detection strategy '{name}', expected one of {sorted(STRATEGIES)}"
        )


# Signal checks in priority order, after the identity check
_SIGNAL_CHECKS = (
    (SignalKind.COMPOSITE.value, DuplicateDeviceError, "This device has already been used by another student."),
    (SignalKind.NETWORK.value, DuplicateNetworkError, "This network has already been used by another student."),
    (SignalKind.DEVICE.value, DuplicateDeviceError, "This device has already been used by another student on a different network."),
)


class DuplicateGuard:
    """Allow/block decisions for sign-in and completion."""

    def __init__(self, store: VoterStore, strategy: DetectionStrategy):
        self.store = store
        self.strategy = strategy

    async def check_sign_in(
        self,
        identity: Identity,
        signals: Dict[str, str],
        voter_id: Optional[str] = None,
    ) -> Decision:
        """
        Decide whether a sign-in may proceed.

        Args:
            identity: Validated credentials
            signals: Strategy signals of the sign-in fingerprint
            voter_id: Existing voter signing in again, if any

        Returns:
            Decision: allow, or block with the highest-priority reason
        """
        owner = await self.store.find_voter_by_personal_email(identity.personal_email)
        if owner is not None and owner.institutional_email != identity.institutional_email:
            logger.warning(
                f"Personal email reuse: {identity.institutional_email} presented the "
                f"personal email of {owner.institutional_email}"
            )
            return Decision.block(DuplicateIdentityError(
                "This personal email has already been used by another student.",
                field="personal_email",
            ))

        return await self._check_bindings(signals, voter_id)

    async def check_completion(self, voter: Voter, signals: Dict[str, str]) -> Decision:
        """
        Decide whether a voter may finalize its ballot set.

        Blocks when a completion fingerprint signal is bound to, or has
        already completed for, another voter.
        """
        decision = await self._check_bindings(signals, voter.id)
        if not decision.allowed:
            return decision

        for kind, error_cls, message in _SIGNAL_CHECKS:
            value = signals.get(kind)
            if value is None:
                continue
            owner = await self.store.find_completion_owner(kind, value)
            if owner is not None and owner != voter.id:
                logger.warning(
                    f"Completion by {voter.institutional_email} reuses a {kind} signal "
                    f"that already completed for voter {owner}"
                )
                return Decision.block(error_cls(message, signal=kind))

        return Decision.allow()

    async def _check_bindings(self, signals: Dict[str, str], voter_id: Optional[str]) -> Decision:
        for kind, error_cls, message in _SIGNAL_CHECKS:
            value = signals.get(kind)
            if value is None:
                continue
            owner = await self.store.find_binding_owner(kind, value)
            if owner is not None and owner != voter_id:
                logger.warning(f"{kind} signal already bound to voter {owner}")
                return Decision.block(error_cls(message, signal=kind))
        return Decision.allow()
