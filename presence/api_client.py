"""
HTTP client for the presence API.

Implements PresenceService over the network so a session can run on a
different machine than the registry:
    GET  /api/nonce   -> {"nonceHex": "..."}
    POST /api/verify  -> {"ok": true} | {"ok": false, "error": "<reason>"}
"""

import time
from typing import Any, Callable, Dict

import requests

from . import codec
from .config import DEFAULT_API_BASE, HTTP_TIMEOUT_SECONDS
from .protocol import NONCE_HEX_LEN, RejectReason, VerifyResult
from .service_interface import PresenceService
from .logger import Logger, Colors


class ApiError(Exception):
    """Raised when the presence API cannot be reached or answers unexpectedly"""
    pass


class PresenceApiClient(PresenceService):
    """HTTP client for the presence verification API"""

    def __init__(self, base_url: str = DEFAULT_API_BASE, timeout: float = HTTP_TIMEOUT_SECONDS,
                 max_retries: int = 3, retry_delay: float = 1.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = requests.Session()

    def _retry_request(self, request_fn: Callable, operation_name: str) -> Any:
        """Retry a request on network errors up to max_retries times"""
        for attempt in range(1, self.max_retries + 1):
            try:
                return request_fn()
            except requests.RequestException as e:
                if attempt < self.max_retries:
                    Logger.substep(f"{Colors.YELLOW}⚠{Colors.RESET} {operation_name} failed (attempt {attempt}/{self.max_retries}): {e}")
                    time.sleep(self.retry_delay * attempt)
                else:
                    Logger.error(f"{operation_name} failed after {self.max_retries} attempts: {e}")
                    raise ApiError(f"{operation_name} failed: {e}") from e

    @staticmethod
    def _json(resp: requests.Response) -> Dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as e:
            raise ApiError(f"Non-JSON response (status {resp.status_code})") from e
        if not isinstance(body, dict):
            raise ApiError(f"Unexpected response body: {body!r}")
        return body

    def request_nonce(self) -> str:
        """GET /api/nonce - Returns a fresh nonce (32 hex chars)"""
        def _get():
            return self.session.get(f"{self.base_url}/api/nonce", timeout=self.timeout)

        resp = self._retry_request(_get, "Nonce request")
        if resp.status_code != 200:
            raise ApiError(f"nonce failed: {resp.status_code}")

        nonce_hex = self._json(resp).get("nonceHex")
        if not codec.is_hex(nonce_hex, NONCE_HEX_LEN):
            raise ApiError(f"Server returned a malformed nonce: {nonce_hex!r}")
        return nonce_hex.lower()

    def verify(self, beacon_id_hex: str, nonce_hex: str, timestamp: str, signature_hex: str) -> VerifyResult:
        """POST /api/verify - Submit a beacon response for verification"""
        payload = {
            "beaconIdHex": beacon_id_hex,
            "nonceHex": nonce_hex,
            "tsMs": timestamp,
            "sigHex": signature_hex,
        }
        Logger.debug("API", f"POST /api/verify {payload}")

        def _post():
            return self.session.post(f"{self.base_url}/api/verify", json=payload, timeout=self.timeout)

        resp = self._retry_request(_post, "Verify request")
        if resp.status_code not in (200, 400, 422):
            raise ApiError(f"verify failed: {resp.status_code}")

        body = self._json(resp)
        if body.get("ok") is True:
            return VerifyResult.accept()

        error = body.get("error")
        try:
            return VerifyResult.reject(RejectReason(error))
        except ValueError:
            # e.g. FastAPI's own 422 for a missing field has no reason code
            raise ApiError(f"verify rejected without a known reason (status {resp.status_code}): {body!r}")

    def health(self) -> Dict[str, Any]:
        """GET /health"""
        def _get():
            return self.session.get(f"{self.base_url}/health", timeout=self.timeout)

        resp = self._retry_request(_get, "Health check")
        if resp.status_code != 200:
            raise ApiError(f"health failed: {resp.status_code}")
        return self._json(resp)
