"""
Verification Engine

Checks a beacon's Ed25519 signature over the canonical message
nonce(16) || timestamp_be64(8) against the key registered for that beacon.

The engine holds no mutable state of its own and never writes to the
registry, so one instance can serve concurrent requests.
"""

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from . import codec
from .messages import MalformedInput, VerifyRequest
from .protocol import RejectReason, VerifyResult
from .registry import BeaconRegistry
from .logger import Logger


def verify_ed25519(message: bytes, signature: bytes, public_key: bytes) -> bool:
    """
    Verify a raw Ed25519 signature.

    Args:
        message: Signed message
        signature: 64-byte raw signature
        public_key: 32-byte raw public key

    Returns:
        True if the signature is valid for exactly this message and key
    """
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, message)
        return True
    except InvalidSignature:
        return False


class VerificationEngine:
    """Stateless signature checker bound to a beacon registry"""

    def __init__(self, registry: BeaconRegistry):
        self.registry = registry

    def verify(
        self,
        beacon_id_hex: str,
        nonce_hex: str,
        timestamp: str,
        signature_hex: str,
    ) -> VerifyResult:
        """
        Verify a beacon's response to a challenge.

        Args:
            beacon_id_hex: Claimed beacon identity (16 hex chars)
            nonce_hex: Nonce previously issued for this attempt (32 hex chars)
            timestamp: Beacon-supplied milliseconds as a decimal string
            signature_hex: Ed25519 signature (128 hex chars)

        Returns:
            VerifyResult.accept() only for a valid signature by the registered key;
            otherwise a rejection with UNKNOWN_BEACON or INVALID_SIGNATURE

        Raises:
            MalformedInput: Before any cryptographic work, if a field is malformed
        """
        request = VerifyRequest.parse(beacon_id_hex, nonce_hex, timestamp, signature_hex)

        public_key_hex = self.registry.lookup(request.beacon_id_hex)
        if public_key_hex is None:
            Logger.debug("VERIFY", f"Unknown beacon {request.beacon_id_hex}")
            return VerifyResult.reject(RejectReason.UNKNOWN_BEACON)

        message = codec.build_canonical_message(request.nonce_hex, request.timestamp)

        if not verify_ed25519(message, request.signature, codec.decode(public_key_hex)):
            Logger.debug("VERIFY", f"Invalid signature from {request.beacon_id_hex}")
            return VerifyResult.reject(RejectReason.INVALID_SIGNATURE)

        Logger.debug("VERIFY", f"Beacon {request.beacon_id_hex} verified (ts={request.timestamp})")
        return VerifyResult.accept()

    def check(
        self,
        beacon_id_hex: str,
        nonce_hex: str,
        timestamp: str,
        signature_hex: str,
    ) -> VerifyResult:
        """Like verify(), but reports malformed input as a rejection instead of raising"""
        try:
            return self.verify(beacon_id_hex, nonce_hex, timestamp, signature_hex)
        except MalformedInput as e:
            return VerifyResult.reject(e.reason)
