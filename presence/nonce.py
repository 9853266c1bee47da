"""
Nonce issuance and the optional replay guard.
"""

import os
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

from . import codec
from .config import NONCE_TTL_SECONDS, NONCE_LEDGER_CAPACITY
from .protocol import NONCE_SIZE
from .logger import Logger


class NonceLedger:
    """
    Time-boxed record of outstanding nonces with at-most-once consumption.

    A nonce is redeemable from record() until it is consumed, expires after
    ttl_seconds, or is evicted because more than capacity nonces are
    outstanding (oldest first).
    """

    def __init__(
        self,
        ttl_seconds: float = NONCE_TTL_SECONDS,
        capacity: int = NONCE_LEDGER_CAPACITY,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")

        self.ttl_seconds = ttl_seconds
        self.capacity = capacity
        self._clock = clock
        self._issued: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def _purge_locked(self, now: float) -> None:
        # Entries are kept in issue order, so expired ones are at the front
        while self._issued:
            nonce_hex, issued_at = next(iter(self._issued.items()))
            if now - issued_at < self.ttl_seconds:
                break
            del self._issued[nonce_hex]

    def record(self, nonce_hex: str) -> None:
        """Mark a freshly issued nonce as outstanding"""
        key = nonce_hex.lower()
        with self._lock:
            now = self._clock()
            self._purge_locked(now)
            self._issued.pop(key, None)
            self._issued[key] = now
            while len(self._issued) > self.capacity:
                self._issued.popitem(last=False)

    def consume(self, nonce_hex: str) -> bool:
        """
        Redeem a nonce.

        Returns:
            True the first time an outstanding, unexpired nonce is consumed;
            False if it was never issued, already consumed, or expired
        """
        if not isinstance(nonce_hex, str):
            return False
        with self._lock:
            self._purge_locked(self._clock())
            return self._issued.pop(nonce_hex.lower(), None) is not None

    def purge(self) -> None:
        """Drop expired entries"""
        with self._lock:
            self._purge_locked(self._clock())

    def __contains__(self, nonce_hex: object) -> bool:
        if not isinstance(nonce_hex, str):
            return False
        with self._lock:
            self._purge_locked(self._clock())
            return nonce_hex.lower() in self._issued

    def __len__(self) -> int:
        with self._lock:
            self._purge_locked(self._clock())
            return len(self._issued)


class NonceIssuer:
    """Issues 16-byte challenges from the OS CSPRNG"""

    def __init__(self, ledger: Optional[NonceLedger] = None):
        self.ledger = ledger

    def issue(self) -> str:
        """
        Draw a fresh nonce.

        Returns:
            32 lowercase hex characters
        """
        nonce_hex = codec.encode(os.urandom(NONCE_SIZE))
        if self.ledger is not None:
            self.ledger.record(nonce_hex)
        Logger.debug("NONCE", f"Issued {nonce_hex}")
        return nonce_hex
