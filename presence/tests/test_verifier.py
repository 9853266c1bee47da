import unittest

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from presence import codec
from presence.logger import Logger
from presence.messages import MalformedInput
from presence.nonce import NonceLedger
from presence.protocol import RejectReason, VerifyResult
from presence.registry import BeaconRegistry
from presence.service import LocalPresenceService
from presence.verifier import VerificationEngine, verify_ed25519
from presence.tests.mock_beacon import BEACON_ID_HEX, public_key_hex

NONCE_HEX = "00112233445566778899aabbccddeeff"
TIMESTAMP = "1700000000000"


def _flip_hex_char(text: str, index: int) -> str:
    ch = text[index]
    return text[:index] + ("1" if ch == "0" else "0") + text[index + 1:]


class TestVerificationEngine(unittest.TestCase):
    def setUp(self):
        Logger.enabled = False
        self.key = Ed25519PrivateKey.generate()
        self.registry = BeaconRegistry.from_mapping({BEACON_ID_HEX: public_key_hex(self.key)})
        self.engine = VerificationEngine(self.registry)

    def tearDown(self):
        Logger.enabled = True

    def _sign(self, nonce_hex=NONCE_HEX, timestamp=TIMESTAMP, key=None):
        message = codec.build_canonical_message(nonce_hex, timestamp)
        return (key or self.key).sign(message).hex()

    def test_valid_signature_accepted(self):
        """Test that a correctly signed canonical message is accepted"""
        result = self.engine.verify(BEACON_ID_HEX, NONCE_HEX, TIMESTAMP, self._sign())

        self.assertEqual(result, VerifyResult.accept())
        self.assertTrue(result.accepted)
        self.assertIsNone(result.reason)

    def test_hex_case_does_not_matter(self):
        """Test that uppercase hex inputs verify the same"""
        result = self.engine.verify(
            BEACON_ID_HEX.upper(), NONCE_HEX.upper(), TIMESTAMP, self._sign().upper())
        self.assertTrue(result.accepted)

    def test_any_message_bit_change_rejected(self):
        """Test that changing the nonce or timestamp invalidates the signature"""
        sig = self._sign()

        other_nonce = _flip_hex_char(NONCE_HEX, 5)
        self.assertEqual(self.engine.verify(BEACON_ID_HEX, other_nonce, TIMESTAMP, sig).reason,
                         RejectReason.INVALID_SIGNATURE)
        self.assertEqual(self.engine.verify(BEACON_ID_HEX, NONCE_HEX, "1700000000001", sig).reason,
                         RejectReason.INVALID_SIGNATURE)

    def test_corrupted_signature_rejected(self):
        """Test that flipping one signature byte gives invalid_signature"""
        sig = bytearray(bytes.fromhex(self._sign()))
        sig[10] ^= 0x01

        result = self.engine.verify(BEACON_ID_HEX, NONCE_HEX, TIMESTAMP, sig.hex())
        self.assertFalse(result.accepted)
        self.assertEqual(result.reason, RejectReason.INVALID_SIGNATURE)

    def test_every_message_byte_is_bound(self):
        """Test that flipping one bit anywhere in the 24-byte message is rejected"""
        sig = self._sign()
        message = codec.build_canonical_message(NONCE_HEX, TIMESTAMP)

        for i in range(len(message)):
            flipped = bytearray(message)
            flipped[i] ^= 0x01
            nonce_hex = bytes(flipped[:16]).hex()
            timestamp = str(int.from_bytes(flipped[16:], 'big'))

            result = self.engine.verify(BEACON_ID_HEX, nonce_hex, timestamp, sig)
            self.assertEqual(result.reason, RejectReason.INVALID_SIGNATURE, f"message byte {i}")

    def test_every_signature_byte_is_bound(self):
        """Test that flipping one bit anywhere in the signature is rejected"""
        sig = bytes.fromhex(self._sign())

        for i in range(len(sig)):
            flipped = bytearray(sig)
            flipped[i] ^= 0x01

            result = self.engine.verify(BEACON_ID_HEX, NONCE_HEX, TIMESTAMP, flipped.hex())
            self.assertEqual(result.reason, RejectReason.INVALID_SIGNATURE, f"signature byte {i}")

    def test_wrong_key_rejected(self):
        """Test that a signature by another key is rejected"""
        sig = self._sign(key=Ed25519PrivateKey.generate())
        result = self.engine.verify(BEACON_ID_HEX, NONCE_HEX, TIMESTAMP, sig)
        self.assertEqual(result.reason, RejectReason.INVALID_SIGNATURE)

    def test_unknown_beacon(self):
        """Test that one changed hex char in the beacon id makes it unknown"""
        beacon_id = _flip_hex_char(BEACON_ID_HEX, 15)
        result = self.engine.verify(beacon_id, NONCE_HEX, TIMESTAMP, self._sign())

        self.assertFalse(result.accepted)
        self.assertEqual(result.reason, RejectReason.UNKNOWN_BEACON)

    def test_malformed_fields_raise(self):
        """Test that malformed input raises before any lookup"""
        sig = self._sign()
        with self.assertRaises(MalformedInput) as ctx:
            self.engine.verify("a1b2", NONCE_HEX, TIMESTAMP, sig)
        self.assertEqual(ctx.exception.field, "beaconId")

        with self.assertRaises(MalformedInput) as ctx:
            self.engine.verify(BEACON_ID_HEX, NONCE_HEX + "0", TIMESTAMP, sig)
        self.assertEqual(ctx.exception.field, "nonce")

        with self.assertRaises(MalformedInput) as ctx:
            self.engine.verify(BEACON_ID_HEX, NONCE_HEX, "17e11", sig)
        self.assertEqual(ctx.exception.field, "timestamp")

        with self.assertRaises(MalformedInput) as ctx:
            self.engine.verify(BEACON_ID_HEX, NONCE_HEX, TIMESTAMP, sig[:-2])
        self.assertEqual(ctx.exception.field, "signature")

    def test_check_reports_malformed_as_rejection(self):
        result = self.engine.check(BEACON_ID_HEX, NONCE_HEX, TIMESTAMP, "zz" * 64)
        self.assertEqual(result, VerifyResult.reject(RejectReason.MALFORMED_SIGNATURE))
        self.assertTrue(result.reason.is_malformed)

    def test_engine_does_not_mutate_registry(self):
        self.engine.verify(BEACON_ID_HEX, NONCE_HEX, TIMESTAMP, self._sign())
        self.engine.verify("ffffffffffffffff", NONCE_HEX, TIMESTAMP, self._sign())
        self.assertEqual(self.registry.beacon_ids(), [BEACON_ID_HEX])

    def test_verify_ed25519_raw(self):
        message = b"\x00" * 24
        sig = self.key.sign(message)
        raw_key = bytes.fromhex(public_key_hex(self.key))

        self.assertTrue(verify_ed25519(message, sig, raw_key))
        self.assertFalse(verify_ed25519(b"\x01" + message[1:], sig, raw_key))

    def test_result_str(self):
        self.assertEqual(str(VerifyResult.accept()), "Accepted")
        self.assertEqual(str(VerifyResult.reject(RejectReason.UNKNOWN_BEACON)), "Rejected(unknown_beacon)")


class TestLocalPresenceService(unittest.TestCase):
    def setUp(self):
        Logger.enabled = False
        self.key = Ed25519PrivateKey.generate()
        self.registry = BeaconRegistry.from_mapping({BEACON_ID_HEX: public_key_hex(self.key)})

    def tearDown(self):
        Logger.enabled = True

    def _sign(self, nonce_hex):
        return self.key.sign(codec.build_canonical_message(nonce_hex, TIMESTAMP)).hex()

    def test_without_replay_guard_any_nonce_verifies(self):
        """Test that without a ledger the engine alone decides"""
        service = LocalPresenceService(self.registry)

        self.assertFalse(service.replay_guard)
        for _ in range(2):
            result = service.verify(BEACON_ID_HEX, NONCE_HEX, TIMESTAMP, self._sign(NONCE_HEX))
            self.assertTrue(result.accepted)

    def test_replay_guard_accepts_once(self):
        """Test that an issued nonce is accepted once and then rejected"""
        service = LocalPresenceService(self.registry, ledger=NonceLedger())
        nonce = service.request_nonce()
        sig = self._sign(nonce)

        self.assertTrue(service.verify(BEACON_ID_HEX, nonce, TIMESTAMP, sig).accepted)
        replay = service.verify(BEACON_ID_HEX, nonce, TIMESTAMP, sig)
        self.assertEqual(replay.reason, RejectReason.UNKNOWN_NONCE)

    def test_replay_guard_rejects_unissued_nonce(self):
        service = LocalPresenceService(self.registry, ledger=NonceLedger())
        result = service.verify(BEACON_ID_HEX, NONCE_HEX, TIMESTAMP, self._sign(NONCE_HEX))
        self.assertEqual(result.reason, RejectReason.UNKNOWN_NONCE)

    def test_bad_signature_does_not_consume_nonce(self):
        """Test that a rejected attempt leaves the nonce redeemable"""
        service = LocalPresenceService(self.registry, ledger=NonceLedger())
        nonce = service.request_nonce()

        bad = service.verify(BEACON_ID_HEX, nonce, TIMESTAMP, "00" * 64)
        self.assertEqual(bad.reason, RejectReason.INVALID_SIGNATURE)
        self.assertTrue(service.verify(BEACON_ID_HEX, nonce, TIMESTAMP, self._sign(nonce)).accepted)


if __name__ == '__main__':
    unittest.main()
