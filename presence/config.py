"""
Beacon Presence Configuration Constants

Configuration values for the presence verification protocol.
Values read from the environment fall back to the defaults below.
"""

import os

# Beacon Registry
# JSON object mapping beacon id hex (16 chars) to Ed25519 public key hex (64 chars).
# A missing file is not fatal: the registry starts empty and every beacon is unknown.
REGISTRY_FILE = os.environ.get("PRESENCE_REGISTRY_FILE", "config/beacons.json")

# HTTP API
# Base URL used by the client side when verifying through a remote server
DEFAULT_API_BASE = os.environ.get("PRESENCE_API_BASE", "http://localhost:8787")
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = int(os.environ.get("PORT", "8787"))

# BLE GATT layout
# One primary service carrying the three protocol characteristics.
SERVICE_UUID = os.environ.get(
    "PRESENCE_SERVICE_UUID", "7b6e0001-5c2a-4f5e-9b1d-3c8a6f0e2d41")
# Read: 8-byte beacon identity
ID_CHAR_UUID = os.environ.get(
    "PRESENCE_ID_CHAR_UUID", "7b6e0002-5c2a-4f5e-9b1d-3c8a6f0e2d41")
# Write without response: 16-byte nonce
SIGN_NONCE_UUID = os.environ.get(
    "PRESENCE_SIGN_NONCE_UUID", "7b6e0003-5c2a-4f5e-9b1d-3c8a6f0e2d41")
# Notify: 8-byte timestamp || 64-byte signature
SIGN_RESP_UUID = os.environ.get(
    "PRESENCE_SIGN_RESP_UUID", "7b6e0004-5c2a-4f5e-9b1d-3c8a6f0e2d41")

# Timeouts (seconds)
# Every blocking step of a session is bounded by one of these.
CONNECT_TIMEOUT_SECONDS = 10.0
OPERATION_TIMEOUT_SECONDS = 5.0
RESPONSE_TIMEOUT_SECONDS = 10.0
HTTP_TIMEOUT_SECONDS = 10
SCAN_TIMEOUT_SECONDS = 5.0

# Replay guard
# How long an issued nonce stays redeemable, and how many are tracked at once
NONCE_TTL_SECONDS = 120
NONCE_LEDGER_CAPACITY = 4096
