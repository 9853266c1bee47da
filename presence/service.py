"""
In-process presence service.

Wires the nonce issuer, verification engine and (optionally) the replay
guard together. The HTTP API serves this object; the CLI can also use it
directly when verifying against a local registry file.
"""

from typing import Optional

from .nonce import NonceIssuer, NonceLedger
from .protocol import RejectReason, VerifyResult
from .registry import BeaconRegistry
from .service_interface import PresenceService
from .verifier import VerificationEngine
from .logger import Logger


class LocalPresenceService(PresenceService):
    """
    Presence service backed by a local registry.

    With a ledger, every nonce is redeemable once: a valid signature over a
    nonce that was not issued here (or was already used, or expired) is
    rejected with UNKNOWN_NONCE.
    """

    def __init__(self, registry: BeaconRegistry, ledger: Optional[NonceLedger] = None):
        self.registry = registry
        self.ledger = ledger
        self.issuer = NonceIssuer(ledger=ledger)
        self.engine = VerificationEngine(registry)

    @property
    def replay_guard(self) -> bool:
        return self.ledger is not None

    def request_nonce(self) -> str:
        return self.issuer.issue()

    def verify(self, beacon_id_hex: str, nonce_hex: str, timestamp: str, signature_hex: str) -> VerifyResult:
        result = self.engine.check(beacon_id_hex, nonce_hex, timestamp, signature_hex)
        if not result.accepted:
            return result

        # Only an accepted signature consumes the nonce
        if self.ledger is not None and not self.ledger.consume(nonce_hex):
            Logger.warning(f"Nonce {nonce_hex.lower()} not outstanding (replayed or expired)")
            return VerifyResult.reject(RejectReason.UNKNOWN_NONCE)

        return result
