"""
Hex codec and canonical message builder.

The canonical message is the only bytestring a beacon ever signs:
    nonce(16) || timestamp_be64(8)
Byte order must match the beacon firmware, so everything here is bit-exact.
"""

import string
from typing import Optional, Union

from .protocol import NONCE_SIZE, TIMESTAMP_SIZE, MAX_TIMESTAMP

_HEX_DIGITS = frozenset(string.hexdigits)


class CodecError(ValueError):
    """Base exception for encoding errors"""
    pass


class InvalidHex(CodecError):
    """Raised when a string is not valid even-length hex"""
    pass


class InvalidNonceLength(CodecError):
    """Raised when a nonce does not decode to exactly 16 bytes"""
    pass


class InvalidTimestamp(CodecError):
    """Raised when a timestamp is not an unsigned 64-bit decimal"""
    pass


def encode(data: bytes) -> str:
    """Encode bytes as lowercase hex (two characters per byte)"""
    return bytes(data).hex()


def decode(text: str) -> bytes:
    """
    Decode a hex string (either case) to bytes.

    Args:
        text: Hex string of even length

    Returns:
        Decoded bytes, len(text) // 2 long

    Raises:
        InvalidHex: On odd length or characters outside [0-9a-fA-F]
    """
    if not isinstance(text, str):
        raise InvalidHex(f"Expected hex string, got {type(text).__name__}")
    if len(text) % 2:
        raise InvalidHex(f"Odd-length hex string ({len(text)} chars)")
    # bytes.fromhex() also tolerates whitespace, which the wire format does not
    if not _HEX_DIGITS.issuperset(text):
        raise InvalidHex("Hex string contains non-hex characters")
    return bytes.fromhex(text)


def is_hex(text: str, length: Optional[int] = None) -> bool:
    """Check that text is valid hex, optionally of an exact character length"""
    if not isinstance(text, str) or len(text) % 2:
        return False
    if length is not None and len(text) != length:
        return False
    return _HEX_DIGITS.issuperset(text)


def parse_timestamp(value: Union[str, int]) -> int:
    """
    Parse a millisecond timestamp given as a decimal string (or int).

    Raises:
        InvalidTimestamp: On non-digit input or a value outside 0..2**64-1
    """
    if isinstance(value, bool):
        raise InvalidTimestamp("Timestamp must be a decimal string")
    if isinstance(value, int):
        ms = value
    elif isinstance(value, str) and value and value.isascii() and value.isdigit():
        ms = int(value)
    else:
        raise InvalidTimestamp(f"Timestamp must be a decimal string, got {value!r}")

    if ms < 0 or ms > MAX_TIMESTAMP:
        raise InvalidTimestamp(f"Timestamp out of 64-bit range: {ms}")
    return ms


def encode_timestamp(ms: int) -> bytes:
    """Encode a millisecond timestamp as 8 big-endian bytes"""
    return parse_timestamp(ms).to_bytes(TIMESTAMP_SIZE, 'big')


def decode_timestamp(data: bytes) -> int:
    """Decode 8 big-endian bytes to a millisecond timestamp"""
    if len(data) != TIMESTAMP_SIZE:
        raise InvalidTimestamp(f"Timestamp must be {TIMESTAMP_SIZE} bytes, got {len(data)}")
    return int.from_bytes(data, 'big')


def build_canonical_message(nonce_hex: str, timestamp: Union[str, int]) -> bytes:
    """
    Build the 24-byte message a beacon signs.

    Args:
        nonce_hex: 32 hex characters (16 bytes)
        timestamp: Milliseconds as a decimal string

    Returns:
        nonce || timestamp as 8 big-endian bytes

    Raises:
        InvalidHex: If nonce_hex contains non-hex characters
        InvalidNonceLength: If the nonce is not exactly 16 bytes (32 hex chars)
        InvalidTimestamp: If the timestamp is not an unsigned 64-bit decimal
    """
    if not isinstance(nonce_hex, str) or not _HEX_DIGITS.issuperset(nonce_hex):
        raise InvalidHex("Nonce is not a hex string")
    # Length is checked on the text so an odd-length nonce reports its length
    if len(nonce_hex) != NONCE_SIZE * 2:
        raise InvalidNonceLength(
            f"Nonce must be exactly {NONCE_SIZE} bytes, got {len(nonce_hex)} hex chars")

    return decode(nonce_hex) + encode_timestamp(parse_timestamp(timestamp))
