"""
Typed protocol messages.

Each external message is parsed once at the boundary into a structure of
fixed-size fields, so malformed input never reaches the verification logic.
"""

from typing import NamedTuple, Union

from . import codec
from .protocol import (
    RejectReason,
    BEACON_ID_HEX_LEN, NONCE_HEX_LEN, SIGNATURE_HEX_LEN,
    RESPONSE_SIZE, TIMESTAMP_SIZE,
)

# Field names as they appear in the HTTP payload, mapped to reason codes
_FIELD_REASONS = {
    "beaconId": RejectReason.MALFORMED_BEACON_ID,
    "nonce": RejectReason.MALFORMED_NONCE,
    "timestamp": RejectReason.MALFORMED_TIMESTAMP,
    "signature": RejectReason.MALFORMED_SIGNATURE,
}


class MalformedInput(ValueError):
    """Raised when a verification request field fails its format check"""

    def __init__(self, field: str, detail: str = ""):
        self.field = field
        self.reason = _FIELD_REASONS[field]
        message = f"Malformed {field}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class VerifyRequest(NamedTuple):
    """A validated verification request"""
    beacon_id: bytes
    nonce: bytes
    timestamp: int
    signature: bytes

    @classmethod
    def parse(
        cls,
        beacon_id_hex: str,
        nonce_hex: str,
        timestamp: Union[str, int],
        signature_hex: str,
    ) -> "VerifyRequest":
        """
        Validate and decode the external (hex/decimal) form of a request.

        Args:
            beacon_id_hex: 16 hex characters
            nonce_hex: 32 hex characters
            timestamp: Decimal digit string, unsigned 64-bit
            signature_hex: 128 hex characters

        Returns:
            VerifyRequest with decoded binary fields

        Raises:
            MalformedInput: Naming the first field that failed
        """
        if not codec.is_hex(beacon_id_hex, BEACON_ID_HEX_LEN):
            raise MalformedInput("beaconId", f"expected {BEACON_ID_HEX_LEN} hex chars")
        if not codec.is_hex(nonce_hex, NONCE_HEX_LEN):
            raise MalformedInput("nonce", f"expected {NONCE_HEX_LEN} hex chars")
        if not isinstance(timestamp, str):
            raise MalformedInput("timestamp", "expected a decimal string")
        try:
            ms = codec.parse_timestamp(timestamp)
        except codec.InvalidTimestamp as e:
            raise MalformedInput("timestamp", str(e)) from e
        if not codec.is_hex(signature_hex, SIGNATURE_HEX_LEN):
            raise MalformedInput("signature", f"expected {SIGNATURE_HEX_LEN} hex chars")

        return cls(
            beacon_id=codec.decode(beacon_id_hex),
            nonce=codec.decode(nonce_hex),
            timestamp=ms,
            signature=codec.decode(signature_hex),
        )

    @property
    def beacon_id_hex(self) -> str:
        return codec.encode(self.beacon_id)

    @property
    def nonce_hex(self) -> str:
        return codec.encode(self.nonce)

    @property
    def signature_hex(self) -> str:
        return codec.encode(self.signature)


class BeaconResponse(NamedTuple):
    """The beacon's notification: timestamp_be64(8) || signature(64)"""
    timestamp: int
    signature: bytes

    @classmethod
    def from_notification(cls, payload: bytes) -> "BeaconResponse":
        """
        Split a 72-byte notification payload.

        Raises:
            ValueError: If the payload is not exactly 72 bytes
        """
        if len(payload) != RESPONSE_SIZE:
            raise ValueError(f"Expected {RESPONSE_SIZE}B response, got {len(payload)}")
        return cls(
            timestamp=codec.decode_timestamp(payload[:TIMESTAMP_SIZE]),
            signature=bytes(payload[TIMESTAMP_SIZE:]),
        )

    def to_notification(self) -> bytes:
        """Serialize back to the 72-byte wire form"""
        return codec.encode_timestamp(self.timestamp) + self.signature

    @property
    def timestamp_str(self) -> str:
        return str(self.timestamp)

    @property
    def signature_hex(self) -> str:
        return codec.encode(self.signature)
