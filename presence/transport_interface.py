"""
Transport Interface - Abstract base for the beacon link

A beacon exposes three endpoints on one service:
- identity:  read, 8 bytes
- challenge: write without response, 16-byte nonce
- response:  notify, 72 bytes (timestamp_be64 || signature)

The link is send-and-notify: a write is never acknowledged at this level,
and the response arrives later as a notification. Implementations must
bound every blocking call by the timeout they are given.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional


class TransportError(Exception):
    """Base exception for link errors"""
    pass


class EndpointMissing(TransportError):
    """Raised when the device lacks a required service or characteristic"""
    pass


class TransportTimeout(TransportError):
    """Raised when a link operation does not finish in time"""
    pass


class BeaconTransport(ABC):
    """
    Abstract interface for the wireless link to one beacon.

    Callbacks (notification and disconnect) may run on a transport-owned
    thread; receivers must not call back into the transport from them.
    """

    def __init__(self) -> None:
        self.on_disconnect: Optional[Callable[[], None]] = None

    @abstractmethod
    def connect(self, timeout: float) -> None:
        """
        Establish the link and resolve the three protocol endpoints.

        Raises:
            EndpointMissing: If a required endpoint is absent
            TransportTimeout: If the link is not up within timeout
            TransportError: On any other link failure
        """
        pass

    @abstractmethod
    def read_identity(self, timeout: float) -> bytes:
        """
        Read the beacon identity endpoint.

        Returns:
            Raw identity bytes (8 for a well-formed beacon)
        """
        pass

    @abstractmethod
    def write_challenge(self, nonce: bytes, timeout: float) -> None:
        """
        Write a nonce to the challenge endpoint without waiting for an acknowledgment.

        Args:
            nonce: 16-byte nonce
        """
        pass

    @abstractmethod
    def start_notifications(self, callback: Callable[[bytes], None], timeout: float) -> None:
        """
        Subscribe to the response endpoint.

        Args:
            callback: Called with each raw notification payload
        """
        pass

    @abstractmethod
    def stop_notifications(self, timeout: float) -> None:
        """Unsubscribe from the response endpoint"""
        pass

    @abstractmethod
    def disconnect(self, timeout: float) -> None:
        """Tear down the link. Safe to call when already disconnected."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the link is up"""
        pass

    def _notify_disconnected(self) -> None:
        """Report an unexpected link loss to the registered listener"""
        if self.on_disconnect:
            self.on_disconnect()
