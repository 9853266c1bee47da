import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from bleak.exc import BleakError

from presence.ble_transport import BleakTransport, discover_beacons
from presence.config import ID_CHAR_UUID, SERVICE_UUID, SIGN_NONCE_UUID, SIGN_RESP_UUID
from presence.logger import Logger
from presence.transport_interface import EndpointMissing, TransportError, TransportTimeout


def _mock_client(missing=()):
    """BleakClient stand-in exposing the presence service"""
    chars = {uuid: MagicMock(name=uuid) for uuid in (ID_CHAR_UUID, SIGN_NONCE_UUID, SIGN_RESP_UUID)}
    service = MagicMock()
    service.get_characteristic.side_effect = lambda uuid: None if uuid in missing else chars[uuid]

    client = MagicMock()
    client.services.get_service.side_effect = lambda uuid: service if uuid == SERVICE_UUID else None
    client.connect = AsyncMock(return_value=True)
    client.disconnect = AsyncMock(return_value=True)
    client.read_gatt_char = AsyncMock(return_value=bytearray.fromhex("a1b2c3d4e5f60708"))
    client.write_gatt_char = AsyncMock()
    client.start_notify = AsyncMock()
    client.stop_notify = AsyncMock()
    client.is_connected = True
    return client, chars


class TestBleakTransport(unittest.TestCase):
    def setUp(self):
        Logger.enabled = False
        self.client, self.chars = _mock_client()
        patcher = patch('presence.ble_transport.BleakClient', return_value=self.client)
        self.mock_client_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.transport = BleakTransport("AA:BB:CC:DD:EE:FF")

    def tearDown(self):
        self.transport.disconnect(timeout=1.0)
        Logger.enabled = True

    def test_connect_resolves_endpoints(self):
        """Test that connect finds all three characteristics"""
        self.transport.connect(timeout=1.0)

        self.assertTrue(self.transport.is_connected)
        self.client.connect.assert_awaited_once()
        self.assertEqual(self.mock_client_cls.call_args[0][0], "AA:BB:CC:DD:EE:FF")

    def test_read_identity(self):
        self.transport.connect(timeout=1.0)

        identity = self.transport.read_identity(timeout=1.0)

        self.assertEqual(identity, bytes.fromhex("a1b2c3d4e5f60708"))
        self.assertIsInstance(identity, bytes)
        self.client.read_gatt_char.assert_awaited_once_with(self.chars[ID_CHAR_UUID])

    def test_write_challenge_without_response(self):
        """Test that the nonce is written as a write-without-response"""
        self.transport.connect(timeout=1.0)
        nonce = bytes(range(16))

        self.transport.write_challenge(nonce, timeout=1.0)

        self.client.write_gatt_char.assert_awaited_once_with(
            self.chars[SIGN_NONCE_UUID], nonce, response=False)

    def test_notifications_forwarded_as_bytes(self):
        """Test that notification payloads reach the callback as bytes"""
        self.transport.connect(timeout=1.0)
        received = []

        self.transport.start_notifications(received.append, timeout=1.0)
        char, handler = self.client.start_notify.call_args[0]
        handler(MagicMock(), bytearray(b"\x01" * 72))

        self.assertIs(char, self.chars[SIGN_RESP_UUID])
        self.assertEqual(received, [b"\x01" * 72])
        self.assertIsInstance(received[0], bytes)

        self.transport.stop_notifications(timeout=1.0)
        self.client.stop_notify.assert_awaited_once_with(self.chars[SIGN_RESP_UUID])

    def test_missing_service(self):
        """Test that a device without the service is rejected and released"""
        self.client.services.get_service.side_effect = lambda uuid: None

        with self.assertRaises(EndpointMissing):
            self.transport.connect(timeout=1.0)
        self.client.disconnect.assert_awaited_once()
        self.assertFalse(self.transport.is_connected)

    def test_missing_characteristic(self):
        client, _ = _mock_client(missing=(SIGN_RESP_UUID,))
        self.mock_client_cls.return_value = client

        with self.assertRaises(EndpointMissing):
            self.transport.connect(timeout=1.0)
        client.disconnect.assert_awaited_once()

    def test_connect_error(self):
        self.client.connect = AsyncMock(side_effect=BleakError("Device not found"))

        with self.assertRaises(TransportError):
            self.transport.connect(timeout=1.0)

    def test_connect_timeout(self):
        """Test that a hanging connect is bounded by the timeout"""
        async def _hang():
            await asyncio.sleep(5)

        self.client.connect = MagicMock(side_effect=lambda: _hang())

        with self.assertRaises(TransportTimeout):
            self.transport.connect(timeout=0.05)

    def test_operations_require_connection(self):
        with self.assertRaises(TransportError):
            self.transport.read_identity(timeout=1.0)
        with self.assertRaises(TransportError):
            self.transport.write_challenge(b"\x00" * 16, timeout=1.0)

    def test_unexpected_disconnect_notifies_listener(self):
        """Test that a link drop reported by bleak reaches on_disconnect"""
        listener = MagicMock()
        self.transport.on_disconnect = listener
        self.transport.connect(timeout=1.0)

        self.transport._handle_disconnected(self.client)

        listener.assert_called_once_with()

    def test_link_loss_drops_client(self):
        """Test that after a link drop the transport reports disconnected and refuses I/O"""
        self.transport.connect(timeout=1.0)

        self.transport._handle_disconnected(self.client)

        self.assertFalse(self.transport.is_connected)
        with self.assertRaises(TransportError):
            self.transport.read_identity(timeout=1.0)

        self.transport.disconnect(timeout=1.0)
        self.client.disconnect.assert_not_awaited()
        self.assertIsNone(self.transport._loop)

    def test_reconnect_after_link_loss(self):
        self.transport.connect(timeout=1.0)
        self.transport._handle_disconnected(self.client)

        self.transport.connect(timeout=1.0)

        self.assertTrue(self.transport.is_connected)
        self.assertEqual(self.client.connect.await_count, 2)

    def test_requested_disconnect_is_silent(self):
        listener = MagicMock()
        self.transport.on_disconnect = listener
        self.transport.connect(timeout=1.0)

        self.transport.disconnect(timeout=1.0)
        self.transport._handle_disconnected(self.client)

        listener.assert_not_called()
        self.client.disconnect.assert_awaited_once()


class TestDiscoverBeacons(unittest.TestCase):
    @patch('presence.ble_transport.BleakScanner')
    def test_discover_filters_by_service(self, mock_scanner):
        device = MagicMock(address="AA:BB:CC:DD:EE:FF")
        mock_scanner.discover = AsyncMock(return_value=[device])

        devices = discover_beacons(timeout=0.1)

        self.assertEqual(devices, [device])
        mock_scanner.discover.assert_awaited_once_with(timeout=0.1, service_uuids=[SERVICE_UUID])

    @patch('presence.ble_transport.BleakScanner')
    def test_discover_error(self, mock_scanner):
        mock_scanner.discover = AsyncMock(side_effect=BleakError("Bluetooth adapter off"))
        with self.assertRaises(TransportError):
            discover_beacons(timeout=0.1)


if __name__ == '__main__':
    unittest.main()
