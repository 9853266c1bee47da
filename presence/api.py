"""
Presence HTTP API.

    GET  /api/nonce   Issue a 16-byte nonce
    POST /api/verify  Verify Ed25519 signature over nonce(16) || ts_be64(8)
    GET  /health      Liveness plus registry size

Status codes on /api/verify:
    200  {"ok": true} or {"ok": false, "error": "invalid_signature"}
    400  {"ok": false, "error": "unknown_beacon" | "unknown_nonce"}
    422  {"ok": false, "error": "malformed_<field>"}
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .protocol import RejectReason
from .service import LocalPresenceService
from .logger import Logger


class NonceResponse(BaseModel):
    nonceHex: str = Field(..., examples=["0123456789abcdef0123456789abcdef"])


class VerifyBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    beaconIdHex: str = Field(..., examples=["a1b2c3d4e5f60708"])
    nonceHex: str = Field(..., examples=["0123456789abcdef0123456789abcdef"])
    tsMs: str = Field(..., examples=["1739550123456"])
    sigHex: str = Field(..., examples=["00" * 64])


class VerifyResponse(BaseModel):
    ok: bool
    error: Optional[str] = None


# Trust rejections answered with 400 rather than 200
_BAD_REQUEST_REASONS = {RejectReason.UNKNOWN_BEACON, RejectReason.UNKNOWN_NONCE}


def _status_for(reason: RejectReason) -> int:
    if reason.is_malformed:
        return 422
    if reason in _BAD_REQUEST_REASONS:
        return 400
    return 200


def create_app(service: LocalPresenceService) -> FastAPI:
    """
    Build the API around a presence service.

    Args:
        service: Local service holding the registry (and optional replay guard)
    """
    app = FastAPI(title="Beacon Presence API", version=__version__)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.state.service = service

    @app.get("/health")
    def health():
        return {"ok": True, "beacons": len(service.registry), "replayGuard": service.replay_guard}

    @app.get("/api/nonce", response_model=NonceResponse, tags=["nonce"])
    def issue_nonce():
        """Returns a 16-byte random nonce as lowercase hex (32 chars)."""
        return NonceResponse(nonceHex=service.request_nonce())

    @app.post("/api/verify", response_model=VerifyResponse, tags=["verify"])
    def verify(body: VerifyBody):
        """Verify Ed25519 signature over message = nonce(16) || ts_be64(8)."""
        result = service.verify(body.beaconIdHex, body.nonceHex, body.tsMs, body.sigHex)
        if result.accepted:
            Logger.success(f"Beacon {body.beaconIdHex.lower()} verified")
            return JSONResponse(status_code=200, content={"ok": True})

        Logger.warning(f"Beacon {body.beaconIdHex} rejected: {result.reason.value}")
        return JSONResponse(
            status_code=_status_for(result.reason),
            content={"ok": False, "error": result.reason.value},
        )

    return app
