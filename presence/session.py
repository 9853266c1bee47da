"""
Challenge/Response Session (client side)

Drives one presence check over a beacon link:

    DISCONNECTED -> CONNECTED -> NONCE_REQUESTED -> AWAITING_RESPONSE -> COMPLETED | FAILED

The response notification carries no nonce echo and no correlation id, so
the session itself is the correlation: it keeps exactly one "current nonce"
slot. Issuing a new nonce overwrites the slot; a late notification for a
superseded nonce is verified against the newer one and simply fails
verification.

Notifications arrive on the transport's thread. They are only buffered
there; verification runs in the caller's thread inside await_result().
"""

import threading
import time
from enum import Enum
from typing import Optional

from . import codec
from .config import CONNECT_TIMEOUT_SECONDS, OPERATION_TIMEOUT_SECONDS, RESPONSE_TIMEOUT_SECONDS
from .messages import BeaconResponse
from .protocol import BEACON_ID_SIZE, NONCE_HEX_LEN, RESPONSE_SIZE, VerifyResult
from .service_interface import PresenceService
from .transport_interface import BeaconTransport, TransportError, TransportTimeout
from .logger import Logger, Colors


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    NONCE_REQUESTED = "nonce_requested"
    AWAITING_RESPONSE = "awaiting_response"
    COMPLETED = "completed"
    FAILED = "failed"


class SessionError(Exception):
    """Base exception for session failures"""
    pass


class BeaconConnectionError(SessionError):
    """Raised when the link cannot be established or the beacon is unusable"""
    pass


class SessionTimeout(SessionError):
    """Raised when a session step does not complete in time"""
    pass


class MalformedResponse(SessionError):
    """Raised when a notification is not exactly 72 bytes"""
    pass


class SessionStateError(SessionError):
    """Raised when an operation does not fit the current session state"""
    pass


# States in which a notification answers the outstanding challenge
_LISTENING = (SessionState.NONCE_REQUESTED, SessionState.AWAITING_RESPONSE)


class PresenceSession:
    """
    One challenge/response session per physical connection.

    To use:
        session = PresenceSession(BleakTransport(address), PresenceApiClient())
        session.connect()
        result = session.verify_presence()
        session.disconnect()
    """

    def __init__(
        self,
        transport: BeaconTransport,
        service: PresenceService,
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
        operation_timeout: float = OPERATION_TIMEOUT_SECONDS,
        response_timeout: float = RESPONSE_TIMEOUT_SECONDS,
    ):
        """
        Initialize the session.

        Args:
            transport: Link to the beacon
            service: Nonce issuer and verifier (local or remote)
            connect_timeout: Bound on link establishment
            operation_timeout: Bound on each read, write and (un)subscribe
            response_timeout: Default bound on waiting for the notification
        """
        self.transport = transport
        self.service = service
        self.connect_timeout = connect_timeout
        self.operation_timeout = operation_timeout
        self.response_timeout = response_timeout

        self._lock = threading.Lock()
        self._response_event = threading.Event()
        self._state = SessionState.DISCONNECTED
        self._beacon_id: Optional[str] = None
        self._nonce: Optional[str] = None
        self._pending: Optional[bytes] = None
        self._subscribed = False

        # Bumped on every disconnect: work started under an older
        # generation must not touch the session afterwards
        self._generation = 0
        # Bumped on every nonce: identifies the outstanding challenge
        self._attempt = 0

        self.last_result: Optional[VerifyResult] = None
        self.last_error: Optional[SessionError] = None
        self.last_response: Optional[BeaconResponse] = None
        self.notification_count = 0
        self.stale_count = 0

        self.transport.on_disconnect = self._handle_link_lost

    # ========================================================================
    # STATE
    # ========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def beacon_id(self) -> Optional[str]:
        """Beacon identity hex, read once on connect"""
        return self._beacon_id

    @property
    def current_nonce(self) -> Optional[str]:
        """The only nonce an incoming notification will be verified against"""
        return self._nonce

    @property
    def is_connected(self) -> bool:
        return self._state is not SessionState.DISCONNECTED

    def _set_state(self, state: SessionState) -> None:
        """Must be called with the lock held"""
        if state is not self._state:
            Logger.debug("SESSION", f"{self._state.name} -> {state.name}")
        self._state = state

    def _fail(self, error: SessionError, generation: int, cause: Optional[BaseException] = None) -> None:
        """Record a failure, move to FAILED and raise"""
        with self._lock:
            if self._generation == generation:
                self._nonce = None
                self._pending = None
                self._set_state(SessionState.FAILED)
            self.last_error = error
        Logger.error(str(error))
        raise error from cause

    def _fail_timeout(self, message: str, generation: int, cause: Optional[BaseException] = None) -> None:
        """Release the subscription, then fail with SessionTimeout"""
        self._release_subscription(generation)
        self._fail(SessionTimeout(message), generation, cause)

    def _release_subscription(self, generation: int) -> None:
        with self._lock:
            if self._generation != generation or not self._subscribed:
                return
            self._subscribed = False
        try:
            self.transport.stop_notifications(self.operation_timeout)
        except TransportError as e:
            Logger.warning(f"Could not unsubscribe from beacon: {e}")

    # ========================================================================
    # CONNECTION
    # ========================================================================

    def connect(self, timeout: Optional[float] = None) -> str:
        """
        Connect to the beacon and read its identity.

        Returns:
            Beacon id hex (16 chars)

        Raises:
            SessionStateError: If already connected
            SessionTimeout: If the link or the identity read timed out
            BeaconConnectionError: On any other link failure or a bad identity
        """
        if timeout is None:
            timeout = self.connect_timeout
        with self._lock:
            if self._state is not SessionState.DISCONNECTED:
                raise SessionStateError(f"Already connected (state {self._state.name})")

        try:
            self.transport.connect(timeout)
            identity = self.transport.read_identity(self.operation_timeout)
        except TransportTimeout as e:
            self._drop_link()
            raise SessionTimeout(f"Connecting to beacon timed out: {e}") from e
        except TransportError as e:
            self._drop_link()
            raise BeaconConnectionError(f"Could not connect to beacon: {e}") from e

        if len(identity) != BEACON_ID_SIZE:
            self._drop_link()
            raise BeaconConnectionError(
                f"Beacon identity must be {BEACON_ID_SIZE} bytes, got {len(identity)}")

        with self._lock:
            self._beacon_id = codec.encode(identity)
            self._subscribed = False
            self.last_error = None
            self._set_state(SessionState.CONNECTED)

        Logger.success(f"Connected to beacon {self._beacon_id}")
        return self._beacon_id

    def _drop_link(self) -> None:
        try:
            self.transport.disconnect(self.operation_timeout)
        except TransportError as e:
            Logger.warning(f"Link teardown failed: {e}")

    def disconnect(self) -> None:
        """
        Disconnect from any state.

        Discards the outstanding nonce, unsubscribes and drops the link. A
        caller blocked in await_result() is woken with SessionStateError; a
        verification already in flight finishes but its result is discarded.
        """
        subscribed = self._invalidate()
        if subscribed:
            try:
                self.transport.stop_notifications(self.operation_timeout)
            except TransportError as e:
                Logger.warning(f"Could not unsubscribe from beacon: {e}")
        self._drop_link()
        Logger.info("Disconnected from beacon")

    def _handle_link_lost(self) -> None:
        """Transport callback: the link dropped underneath us"""
        self._invalidate()
        Logger.tagged("LINK", Colors.YELLOW, "Beacon link lost")

    def _invalidate(self) -> bool:
        """Reset to DISCONNECTED. Returns whether a subscription was active."""
        with self._lock:
            self._generation += 1
            self._nonce = None
            self._pending = None
            self._beacon_id = None
            subscribed = self._subscribed
            self._subscribed = False
            self._set_state(SessionState.DISCONNECTED)
        self._response_event.set()
        return subscribed

    # ========================================================================
    # CHALLENGE / RESPONSE
    # ========================================================================

    def request_challenge(self) -> str:
        """
        Issue a fresh nonce and write it to the beacon.

        Overwrites any outstanding nonce. Subscribes to the response
        endpoint once per connection.

        Returns:
            The nonce hex now held in the session's slot

        Raises:
            SessionStateError: If not connected
            SessionTimeout: If subscribing or writing timed out
            SessionError: If the nonce could not be obtained or written
        """
        with self._lock:
            if self._state is SessionState.DISCONNECTED:
                raise SessionStateError("Not connected to a beacon yet")
            generation = self._generation

        try:
            nonce_hex = self.service.request_nonce()
        except Exception as e:
            self._fail(SessionError(f"Nonce request failed: {e}"), generation, e)

        if not codec.is_hex(nonce_hex, NONCE_HEX_LEN):
            self._fail(SessionError(f"Service issued a malformed nonce: {nonce_hex!r}"), generation)
        nonce_hex = nonce_hex.lower()

        with self._lock:
            if self._generation != generation:
                raise SessionStateError("Beacon disconnected while requesting a nonce")
            self._nonce = nonce_hex
            self._attempt += 1
            attempt = self._attempt
            self._pending = None
            self._response_event.clear()
            self._set_state(SessionState.NONCE_REQUESTED)
            need_subscribe = not self._subscribed
            self._subscribed = True

        Logger.debug("SESSION", f"Nonce {nonce_hex}")

        try:
            if need_subscribe:
                self.transport.start_notifications(self._on_notification, self.operation_timeout)
            self.transport.write_challenge(codec.decode(nonce_hex), self.operation_timeout)
        except TransportTimeout as e:
            self._fail_timeout(f"Sending challenge timed out: {e}", generation, e)
        except TransportError as e:
            if need_subscribe:
                with self._lock:
                    if self._generation == generation:
                        self._subscribed = False
            self._fail(SessionError(f"Sending challenge failed: {e}"), generation, e)

        with self._lock:
            if self._generation == generation and self._attempt == attempt:
                self._set_state(SessionState.AWAITING_RESPONSE)

        return nonce_hex

    def _on_notification(self, payload: bytes) -> None:
        """Transport callback: buffer the latest response payload"""
        with self._lock:
            self.notification_count += 1
            if self._state not in _LISTENING:
                self.stale_count += 1
                Logger.debug("SESSION", f"Dropping stale notification ({len(payload)}B) in {self._state.name}")
                return
            self._pending = bytes(payload)
        self._response_event.set()

    def await_result(self, timeout: Optional[float] = None) -> VerifyResult:
        """
        Wait for the beacon's notification and verify it.

        Args:
            timeout: Seconds to wait for the notification

        Returns:
            The verification result (accepted or rejected); state is COMPLETED

        Raises:
            SessionStateError: No challenge outstanding, disconnected meanwhile,
                or the retained nonce is unusable
            SessionTimeout: No notification in time
            MalformedResponse: Notification is not exactly 72 bytes
            SessionError: The verification call itself failed
        """
        if timeout is None:
            timeout = self.response_timeout
        deadline = time.monotonic() + timeout

        with self._lock:
            if self._state not in _LISTENING:
                raise SessionStateError(f"No challenge outstanding (state {self._state.name})")
            generation = self._generation
            attempt = self._attempt

        while True:
            remaining = max(0.0, deadline - time.monotonic())
            if not self._response_event.wait(remaining):
                self._fail_timeout(f"No response from beacon within {timeout}s", generation)

            with self._lock:
                self._response_event.clear()
                if self._generation != generation:
                    raise SessionStateError("Beacon disconnected while awaiting response")
                if self._attempt != attempt:
                    raise SessionStateError("Challenge superseded by a newer nonce")
                payload = self._pending
                self._pending = None
                if payload is None:
                    continue
                nonce_hex = self._nonce
                beacon_id = self._beacon_id
                break

        if len(payload) != RESPONSE_SIZE:
            self._fail(MalformedResponse(f"Expected {RESPONSE_SIZE}B, got {len(payload)}"), generation)

        response = BeaconResponse.from_notification(payload)
        self.last_response = response

        if not nonce_hex or len(nonce_hex) != NONCE_HEX_LEN:
            self._fail(SessionStateError(
                f"Nonce not ready (len={len(nonce_hex or '')}), request a new challenge"), generation)

        try:
            result = self.service.verify(beacon_id, nonce_hex, response.timestamp_str, response.signature_hex)
        except Exception as e:
            self._fail(SessionError(f"Verification call failed: {e}"), generation, e)

        with self._lock:
            if self._generation != generation:
                Logger.warning("Discarding verification result: beacon disconnected meanwhile")
                raise SessionStateError("Beacon disconnected during verification")
            self.last_result = result
            if self._attempt == attempt:
                self._nonce = None
                self._set_state(SessionState.COMPLETED)

        return result

    def verify_presence(self, timeout: Optional[float] = None) -> VerifyResult:
        """Run one full challenge/response: request_challenge() then await_result()"""
        self.request_challenge()
        return self.await_result(timeout)

    # ========================================================================
    # CONTEXT MANAGER
    # ========================================================================

    def __enter__(self) -> "PresenceSession":
        if self._state is SessionState.DISCONNECTED:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._state is not SessionState.DISCONNECTED:
            self.disconnect()
