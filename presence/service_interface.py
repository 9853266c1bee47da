"""
Presence Service Interface - Abstract base for nonce issuance and verification

The challenge/response session only needs two operations from the verifier
side. This interface lets it run against an in-process verifier or a remote
HTTP API without changes.

Implementations:
- LocalPresenceService: direct calls into the verification engine
- PresenceApiClient: HTTP calls to a running presence API
"""

from abc import ABC, abstractmethod

from .protocol import VerifyResult


class PresenceService(ABC):
    """
    Abstract interface for the verifier side of the protocol.
    """

    @abstractmethod
    def request_nonce(self) -> str:
        """
        Obtain a freshly issued nonce.

        Returns:
            32 lowercase hex characters
        """
        pass

    @abstractmethod
    def verify(self, beacon_id_hex: str, nonce_hex: str, timestamp: str, signature_hex: str) -> VerifyResult:
        """
        Verify a beacon response.

        Args:
            beacon_id_hex: Beacon identity (16 hex chars)
            nonce_hex: Nonce issued for this attempt (32 hex chars)
            timestamp: Beacon milliseconds as a decimal string
            signature_hex: Ed25519 signature (128 hex chars)

        Returns:
            VerifyResult; malformed input is reported as a rejection
            with a malformed_* reason, never raised
        """
        pass
