"""
Beacon Presence - Command Line Entry Point

COMMANDS:
  serve    Run the verification API (nonce issuance + signature verification)
  scan     List nearby beacons advertising the presence service
  nonce    Print a freshly issued nonce
  verify   Connect to a beacon and run challenge/response presence checks

PROTOCOL:
  1. Client obtains a 16-byte nonce from the verifier
  2. Client writes the nonce to the beacon's challenge characteristic
  3. Beacon notifies timestamp_be64(8) || Ed25519 signature(64) over
     nonce(16) || timestamp_be64(8)
  4. Verifier checks the signature against the beacon's registered key

Usage:
    python -m presence.main serve --registry config/beacons.json
    python -m presence.main verify AA:BB:CC:DD:EE:FF --api http://localhost:8787
    python -m presence.main -v verify AA:BB:CC:DD:EE:FF --registry config/beacons.json
"""

import argparse
import signal
import sys
from typing import Optional

import uvicorn

from .api import create_app
from .api_client import PresenceApiClient
from .ble_transport import BleakTransport, discover_beacons
from .config import (
    DEFAULT_API_BASE, DEFAULT_HOST, DEFAULT_PORT, REGISTRY_FILE,
    NONCE_TTL_SECONDS, NONCE_LEDGER_CAPACITY,
    RESPONSE_TIMEOUT_SECONDS, SCAN_TIMEOUT_SECONDS,
)
from .nonce import NonceIssuer, NonceLedger
from .registry import BeaconRegistry, RegistryError
from .service import LocalPresenceService
from .service_interface import PresenceService
from .session import PresenceSession, SessionError
from .transport_interface import TransportError
from .logger import Logger, Colors


# ============================================================================
# SERVE
# ============================================================================

def _install_reload_handler(registry: BeaconRegistry) -> None:
    """Reload the registry on SIGHUP (POSIX only)"""
    if not hasattr(signal, "SIGHUP"):
        return

    def _reload(_signum, _frame):
        try:
            registry.reload()
        except RegistryError as e:
            Logger.error(f"Registry reload failed, keeping previous entries: {e}")

    signal.signal(signal.SIGHUP, _reload)


def run_serve(args: argparse.Namespace) -> int:
    """Load the registry and serve the API until interrupted"""
    try:
        registry = BeaconRegistry.load(args.registry)
    except RegistryError as e:
        Logger.error(f"Failed to load beacon registry: {e}")
        return 1

    ledger = None
    if args.replay_guard:
        ledger = NonceLedger(ttl_seconds=args.nonce_ttl, capacity=NONCE_LEDGER_CAPACITY)
        Logger.info(f"Replay guard enabled (nonce TTL {args.nonce_ttl}s)")

    service = LocalPresenceService(registry, ledger=ledger)
    app = create_app(service)
    _install_reload_handler(registry)

    Logger.info(f"API listening on http://localhost:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")
    return 0


# ============================================================================
# SCAN / NONCE
# ============================================================================

def run_scan(args: argparse.Namespace) -> int:
    """Print nearby beacons"""
    Logger.info(f"Scanning for beacons ({args.timeout}s)...")
    try:
        devices = discover_beacons(timeout=args.timeout)
    except TransportError as e:
        Logger.error(str(e))
        return 1

    if not devices:
        Logger.warning("No beacons found")
        return 1

    for device in devices:
        print(f"  {device.address}  {device.name or 'Unknown device'}")
    return 0


def run_nonce(_args: argparse.Namespace) -> int:
    print(NonceIssuer().issue())
    return 0


# ============================================================================
# VERIFY
# ============================================================================

def _build_service(args: argparse.Namespace) -> Optional[PresenceService]:
    """Remote API by default, local registry when --registry is given"""
    if args.registry:
        try:
            return LocalPresenceService(BeaconRegistry.load(args.registry))
        except RegistryError as e:
            Logger.error(f"Failed to load beacon registry: {e}")
            return None
    return PresenceApiClient(base_url=args.api)


def run_verify(args: argparse.Namespace, transport=None) -> int:
    """
    Connect to a beacon and run the requested number of presence checks.

    Returns:
        0 if every attempt was accepted, 1 otherwise
    """
    service = _build_service(args)
    if service is None:
        return 1

    transport = transport or BleakTransport(args.address)
    session = PresenceSession(transport, service, response_timeout=args.timeout)

    Logger.header("Beacon Presence Verification")
    Logger.step(1, f"Connecting to {args.address}...")
    try:
        beacon_id = session.connect()
    except SessionError as e:
        Logger.error(str(e))
        return 1
    Logger.substep(f"Beacon ID: {beacon_id}")

    accepted = 0
    try:
        for attempt in range(1, args.attempts + 1):
            Logger.step(attempt + 1, f"Presence check {attempt}/{args.attempts}...")
            try:
                nonce_hex = session.request_challenge()
                result = session.await_result(args.timeout)
            except SessionError as e:
                Logger.substep(f"{Colors.RED}✗{Colors.RESET} {e}")
                if not session.is_connected:
                    break
                continue

            response = session.last_response
            Logger.substep(f"Nonce:          {nonce_hex}")
            Logger.substep(f"Timestamp (ms): {response.timestamp_str}")
            Logger.substep(f"Signature:      {response.signature_hex}")
            if result.accepted:
                accepted += 1
                Logger.substep(f"{Colors.GREEN}✓{Colors.RESET} Verified")
            else:
                Logger.substep(f"{Colors.RED}✗{Colors.RESET} Not verified ({result.reason.value})")

    except KeyboardInterrupt:
        print(f"\n\n{Colors.YELLOW}Shutting down...{Colors.RESET}")

    finally:
        # Also releases the transport after a link loss
        session.disconnect()
        Logger.section("Statistics")
        print(f"  Accepted: {accepted}/{args.attempts}")
        print(f"  Notifications: {session.notification_count} ({session.stale_count} stale)")

    ok = accepted == args.attempts
    Logger.result_header("Presence verified" if ok else "Presence NOT verified", ok)
    return 0 if ok else 1


# ============================================================================
# COMMAND LINE INTERFACE
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Beacon Presence - BLE challenge/response with Ed25519 verification'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )
    commands = parser.add_subparsers(dest='command', required=True)

    serve = commands.add_parser('serve', help='Run the verification API')
    serve.add_argument('--host', default=DEFAULT_HOST, help=f'Bind address (default: {DEFAULT_HOST})')
    serve.add_argument('--port', type=int, default=DEFAULT_PORT, help=f'Port (default: {DEFAULT_PORT})')
    serve.add_argument('--registry', default=REGISTRY_FILE, help=f'Beacon registry file (default: {REGISTRY_FILE})')
    serve.add_argument('--replay-guard', action='store_true', help='Accept each issued nonce at most once')
    serve.add_argument('--nonce-ttl', type=float, default=NONCE_TTL_SECONDS,
                       help=f'Replay guard nonce lifetime in seconds (default: {NONCE_TTL_SECONDS})')
    serve.set_defaults(func=run_serve)

    scan = commands.add_parser('scan', help='List nearby beacons')
    scan.add_argument('--timeout', type=float, default=SCAN_TIMEOUT_SECONDS, help='Scan duration in seconds')
    scan.set_defaults(func=run_scan)

    nonce = commands.add_parser('nonce', help='Print a fresh nonce')
    nonce.set_defaults(func=run_nonce)

    verify = commands.add_parser('verify', help='Verify presence of a beacon')
    verify.add_argument('address', help='Beacon BLE address')
    source = verify.add_mutually_exclusive_group()
    source.add_argument('--api', default=DEFAULT_API_BASE, help=f'Verifier API base URL (default: {DEFAULT_API_BASE})')
    source.add_argument('--registry', help='Verify locally against this registry file instead of the API')
    verify.add_argument('-n', '--attempts', type=int, default=1, help='Number of presence checks (default: 1)')
    verify.add_argument('--timeout', type=float, default=RESPONSE_TIMEOUT_SECONDS,
                        help=f'Seconds to wait for each beacon response (default: {RESPONSE_TIMEOUT_SECONDS})')
    verify.set_defaults(func=run_verify)

    return parser


def main(argv=None) -> int:
    """
    Main entry point.

    Usage:
        python -m presence.main serve                      # API on :8787
        python -m presence.main scan                       # Find beacons
        python -m presence.main verify <address> -n 3      # Three presence checks
    """
    args = build_parser().parse_args(argv)
    Logger.verbose = args.verbose
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
