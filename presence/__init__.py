"""
Beacon Presence Package
Proves a physical BLE beacon is present by verifying its Ed25519
signature over a fresh challenge.
"""

__version__ = '0.1.0'

from .protocol import RejectReason, VerifyResult
from .messages import BeaconResponse, MalformedInput, VerifyRequest
from .codec import build_canonical_message, CodecError, InvalidHex, InvalidNonceLength, InvalidTimestamp
from .registry import BeaconRegistry, RegistryError, MalformedBeaconId, MalformedPublicKey, DuplicateBeaconId
from .nonce import NonceIssuer, NonceLedger
from .verifier import VerificationEngine
from .service import LocalPresenceService
from .session import (
    PresenceSession, SessionState, SessionError, BeaconConnectionError,
    SessionTimeout, MalformedResponse, SessionStateError,
)

__all__ = [
    'RejectReason',
    'VerifyResult',
    'BeaconResponse',
    'MalformedInput',
    'VerifyRequest',
    'build_canonical_message',
    'CodecError',
    'InvalidHex',
    'InvalidNonceLength',
    'InvalidTimestamp',
    'BeaconRegistry',
    'RegistryError',
    'MalformedBeaconId',
    'MalformedPublicKey',
    'DuplicateBeaconId',
    'NonceIssuer',
    'NonceLedger',
    'VerificationEngine',
    'LocalPresenceService',
    'PresenceSession',
    'SessionState',
    'SessionError',
    'BeaconConnectionError',
    'SessionTimeout',
    'MalformedResponse',
    'SessionStateError',
]
