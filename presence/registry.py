"""
Beacon Registry

Trusted mapping from beacon identity to its Ed25519 public key.

File format (config/beacons.json):
    { "<beacon id, 16 hex chars>": "<public key, 64 hex chars>", ... }

The registry is loaded once at startup and is read-only afterwards. A reload
parses the complete source first and swaps the whole table in one step, so a
lookup never sees a partially loaded registry. Any malformed entry aborts the
load: a typo must not silently create or drop a trust relationship.
"""

import json
import os
import threading
from typing import Dict, List, Mapping, Optional

from . import codec
from .protocol import BEACON_ID_HEX_LEN, PUBLIC_KEY_HEX_LEN
from .logger import Logger


class RegistryError(Exception):
    """Base exception for registry configuration errors"""
    pass


class MalformedBeaconId(RegistryError):
    """Raised when a registry identifier is not 16 hex characters"""
    pass


class MalformedPublicKey(RegistryError):
    """Raised when a registry public key is not 64 hex characters"""
    pass


class DuplicateBeaconId(RegistryError):
    """Raised when two registry identifiers differ only in case"""
    pass


def _parse_entries(mapping: Mapping) -> Dict[str, str]:
    """Validate and normalize every entry, or raise on the first bad one"""
    entries: Dict[str, str] = {}
    for beacon_id, public_key in mapping.items():
        if not codec.is_hex(beacon_id, BEACON_ID_HEX_LEN):
            raise MalformedBeaconId(
                f"Bad beacon id: {beacon_id!r} (expect {BEACON_ID_HEX_LEN} hex chars)")
        if not codec.is_hex(public_key, PUBLIC_KEY_HEX_LEN):
            raise MalformedPublicKey(
                f"Bad public key for {beacon_id} (expect {PUBLIC_KEY_HEX_LEN} hex chars)")
        key = beacon_id.lower()
        if key in entries:
            raise DuplicateBeaconId(f"Beacon id {key} is listed more than once")
        entries[key] = public_key.lower()
    return entries


def _unique_keys(pairs) -> dict:
    """json object hook: the same identifier twice is ambiguous"""
    doc = {}
    for key, value in pairs:
        if key in doc:
            raise DuplicateBeaconId(f"Beacon id {key} is listed more than once")
        doc[key] = value
    return doc


def _read_source(path: str) -> Optional[Dict[str, str]]:
    """Read and validate a registry file. Returns None if the file is absent."""
    if not os.path.exists(path):
        return None

    try:
        with open(path, 'r', encoding='utf-8') as f:
            doc = json.load(f, object_pairs_hook=_unique_keys)
    except json.JSONDecodeError as e:
        raise RegistryError(f"Registry {path} is not valid JSON: {e}") from e

    if not isinstance(doc, dict):
        raise RegistryError(f"Registry {path} must be a JSON object")
    return _parse_entries(doc)


class BeaconRegistry:
    """
    Read-mostly map of beacon id hex -> public key hex.

    Safe for concurrent lookups. Construct with load() or from_mapping().
    """

    def __init__(self, entries: Optional[Dict[str, str]] = None, source: Optional[str] = None):
        self._entries: Dict[str, str] = dict(entries or {})
        self._lock = threading.Lock()
        self.source = source

    @classmethod
    def load(cls, path: str) -> "BeaconRegistry":
        """
        Load the registry from a JSON file.

        Args:
            path: Registry file path

        Returns:
            Populated registry (empty if the file does not exist)

        Raises:
            MalformedBeaconId, MalformedPublicKey: On a bad entry
            DuplicateBeaconId: If an identifier appears twice (case-insensitive)
            RegistryError: If the file is not a JSON object
        """
        entries = _read_source(path)
        if entries is None:
            Logger.warning(f"Beacon registry not found at {path}. Using empty registry.")
            return cls({}, source=path)

        Logger.success(f"Loaded {len(entries)} beacon(s) from {path}")
        return cls(entries, source=path)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str]) -> "BeaconRegistry":
        """Build a registry from an inline mapping (same validation as load)"""
        return cls(_parse_entries(mapping))

    def reload(self, path: Optional[str] = None) -> int:
        """
        Replace all entries from the source file.

        The new table is fully parsed before it is published; on error the
        current entries stay in place and the error propagates.

        Returns:
            Number of beacons after the reload
        """
        path = path or self.source
        if path is None:
            raise RegistryError("Registry has no source to reload from")

        entries = _read_source(path)
        if entries is None:
            Logger.warning(f"Beacon registry not found at {path}. Using empty registry.")
            entries = {}

        with self._lock:
            self._entries = entries
            self.source = path

        Logger.info(f"Reloaded {len(entries)} beacon(s) from {path}")
        return len(entries)

    def lookup(self, beacon_id_hex: str) -> Optional[str]:
        """Get the public key hex for a beacon id (case-insensitive)"""
        if not isinstance(beacon_id_hex, str):
            return None
        return self._entries.get(beacon_id_hex.lower())

    def beacon_ids(self) -> List[str]:
        return sorted(self._entries)

    def __contains__(self, beacon_id_hex: object) -> bool:
        return isinstance(beacon_id_hex, str) and self.lookup(beacon_id_hex) is not None

    def __len__(self) -> int:
        return len(self._entries)
