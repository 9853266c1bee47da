"""
BLE transport for the beacon link, built on bleak.

bleak is asyncio-only. The transport runs a private event loop on a
background thread and exposes blocking calls with timeouts, so the
session can stay a plain threaded state machine.
"""

import asyncio
import concurrent.futures
import threading
from typing import Callable, Dict, List, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError

from .config import SERVICE_UUID, ID_CHAR_UUID, SIGN_NONCE_UUID, SIGN_RESP_UUID, SCAN_TIMEOUT_SECONDS
from .transport_interface import BeaconTransport, EndpointMissing, TransportError, TransportTimeout
from .logger import Logger

_TIMEOUT_ERRORS = (concurrent.futures.TimeoutError, asyncio.TimeoutError)


def discover_beacons(timeout: float = SCAN_TIMEOUT_SECONDS, service_uuid: str = SERVICE_UUID) -> List[BLEDevice]:
    """
    Scan for devices advertising the beacon service.

    Args:
        timeout: Scan duration in seconds
        service_uuid: Service UUID to filter on

    Returns:
        Discovered devices (address and name)
    """
    try:
        return asyncio.run(BleakScanner.discover(timeout=timeout, service_uuids=[service_uuid]))
    except (BleakError, OSError) as e:
        raise TransportError(f"Scan failed: {e}") from e


class BleakTransport(BeaconTransport):
    """
    Link to one beacon over BLE GATT.

    To use:
        transport = BleakTransport("AA:BB:CC:DD:EE:FF")
        transport.connect(timeout=10.0)
        beacon_id = transport.read_identity(timeout=5.0)
    """

    def __init__(
        self,
        address: str,
        service_uuid: str = SERVICE_UUID,
        id_char_uuid: str = ID_CHAR_UUID,
        nonce_char_uuid: str = SIGN_NONCE_UUID,
        resp_char_uuid: str = SIGN_RESP_UUID,
    ) -> None:
        """
        Initialize the transport.

        Args:
            address: Device address (MAC, or platform UUID on macOS)
            service_uuid: Primary service carrying the protocol characteristics
            id_char_uuid: Identity characteristic (read)
            nonce_char_uuid: Challenge characteristic (write without response)
            resp_char_uuid: Response characteristic (notify)
        """
        super().__init__()
        self.address = address
        self.service_uuid = service_uuid
        self.char_uuids = {
            "identity": id_char_uuid,
            "challenge": nonce_char_uuid,
            "response": resp_char_uuid,
        }

        self._client: Optional[BleakClient] = None
        self._chars: Dict[str, object] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._closing = False

    # ========================================================================
    # Event loop thread
    # ========================================================================

    def _start_loop(self) -> None:
        if self._loop is not None:
            return
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name=f"ble-{self.address}", daemon=True)
        self._thread.start()

    def _stop_loop(self) -> None:
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread:
            self._thread.join(timeout=2.0)
        if not self._loop.is_running():
            self._loop.close()
        self._loop = None
        self._thread = None

    def _run(self, coro, timeout: float, operation: str):
        """Run a coroutine on the loop thread and wait for it with a timeout"""
        if self._loop is None:
            coro.close()
            raise TransportError(f"{operation} failed: not connected")

        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result(timeout=timeout)
        except _TIMEOUT_ERRORS as e:
            future.cancel()
            raise TransportTimeout(f"{operation} timed out after {timeout}s") from e
        except (BleakError, OSError) as e:
            raise TransportError(f"{operation} failed: {e}") from e

    # ========================================================================
    # BeaconTransport
    # ========================================================================

    def _handle_disconnected(self, _client: BleakClient) -> None:
        """bleak callback, runs on the loop thread"""
        if self._closing:
            return
        # The loop thread stays up until disconnect() so a reconnect can reuse it
        self._client = None
        self._chars = {}
        Logger.warning(f"Beacon {self.address} disconnected")
        self._notify_disconnected()

    def connect(self, timeout: float) -> None:
        self._start_loop()
        self._closing = False
        client = BleakClient(self.address, disconnected_callback=self._handle_disconnected, timeout=timeout)

        try:
            self._run(client.connect(), timeout, "Connect")
            self._client = client
            self._chars = self._resolve_endpoints(client)
        except TransportError:
            self._client = client
            self.disconnect(timeout)
            raise

        Logger.debug("BLE", f"Connected to {self.address}, endpoints resolved")

    def _resolve_endpoints(self, client: BleakClient) -> Dict[str, object]:
        service = client.services.get_service(self.service_uuid)
        if service is None:
            raise EndpointMissing(f"Service {self.service_uuid} not found on {self.address}")

        chars = {}
        for name, uuid in self.char_uuids.items():
            char = service.get_characteristic(uuid)
            if char is None:
                raise EndpointMissing(f"Characteristic {name} ({uuid}) not found on {self.address}")
            chars[name] = char
        return chars

    def _char(self, name: str):
        if self._client is None or name not in self._chars:
            raise TransportError(f"Not connected to {self.address}")
        return self._chars[name]

    def read_identity(self, timeout: float) -> bytes:
        char = self._char("identity")
        return bytes(self._run(self._client.read_gatt_char(char), timeout, "Identity read"))

    def write_challenge(self, nonce: bytes, timeout: float) -> None:
        char = self._char("challenge")
        self._run(self._client.write_gatt_char(char, nonce, response=False), timeout, "Challenge write")

    def start_notifications(self, callback: Callable[[bytes], None], timeout: float) -> None:
        char = self._char("response")

        def _on_notify(_sender, data: bytearray) -> None:
            callback(bytes(data))

        self._run(self._client.start_notify(char, _on_notify), timeout, "Subscribe")

    def stop_notifications(self, timeout: float) -> None:
        char = self._char("response")
        self._run(self._client.stop_notify(char), timeout, "Unsubscribe")

    def disconnect(self, timeout: float) -> None:
        self._closing = True
        client = self._client
        self._client = None
        self._chars = {}

        try:
            if client is not None and self._loop is not None:
                self._run(client.disconnect(), timeout, "Disconnect")
        except TransportError as e:
            Logger.warning(f"Disconnect from {self.address} was not clean: {e}")
        finally:
            self._stop_loop()

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected
