"""
Protocol definitions for the beacon presence challenge/response.
Sizes here must match the beacon firmware byte-for-byte.
"""

from enum import Enum
from typing import NamedTuple, Optional

# Field sizes (bytes)
BEACON_ID_SIZE = 8
PUBLIC_KEY_SIZE = 32
NONCE_SIZE = 16
TIMESTAMP_SIZE = 8
SIGNATURE_SIZE = 64

# nonce(16) || timestamp_be64(8)
CANONICAL_MESSAGE_SIZE = NONCE_SIZE + TIMESTAMP_SIZE

# BLE notification: timestamp_be64(8) || signature(64)
RESPONSE_SIZE = TIMESTAMP_SIZE + SIGNATURE_SIZE

# Hex field lengths (characters)
BEACON_ID_HEX_LEN = BEACON_ID_SIZE * 2
PUBLIC_KEY_HEX_LEN = PUBLIC_KEY_SIZE * 2
NONCE_HEX_LEN = NONCE_SIZE * 2
SIGNATURE_HEX_LEN = SIGNATURE_SIZE * 2

MAX_TIMESTAMP = (1 << 64) - 1


class RejectReason(str, Enum):
    """Machine-readable reason codes for a negative verification result"""

    # Trust errors: expected outcomes of normal operation
    UNKNOWN_BEACON = "unknown_beacon"
    INVALID_SIGNATURE = "invalid_signature"
    UNKNOWN_NONCE = "unknown_nonce"

    # Input errors: detected before any cryptographic work
    MALFORMED_BEACON_ID = "malformed_beacon_id"
    MALFORMED_NONCE = "malformed_nonce"
    MALFORMED_TIMESTAMP = "malformed_timestamp"
    MALFORMED_SIGNATURE = "malformed_signature"

    @property
    def is_malformed(self) -> bool:
        """Check if this reason is an input error rather than a trust error"""
        return self.value.startswith("malformed_")


class VerifyResult(NamedTuple):
    """Outcome of a verification. Reason codes are for diagnostics only."""
    accepted: bool
    reason: Optional[RejectReason] = None

    @classmethod
    def accept(cls) -> "VerifyResult":
        return cls(True, None)

    @classmethod
    def reject(cls, reason: RejectReason) -> "VerifyResult":
        return cls(False, RejectReason(reason))

    def __str__(self) -> str:
        if self.accepted:
            return "Accepted"
        return f"Rejected({self.reason.value if self.reason else 'unknown'})"
