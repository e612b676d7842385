"""FastAPI server for Concord."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Mapping
import hashlib
import logging
import re

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from concord.audit import AuditLog
from concord.breaker import BreakerRegistry
from concord.chat import ChatHandler
from concord.config import Config, configure_logging, get_config
from concord.manifest import Manifest
from concord.middleware import (
    FixedWindowLimiter,
    RateLimitMiddleware,
    RateLimitRule,
    SecurityHeadersMiddleware,
)
from concord.models.client import ProviderClient
from concord.receipts import ReceiptStore
from concord.signing import Signer, SigningError

logger = logging.getLogger(__name__)

PRODUCT_ENDPOINTS = ["/v1/verify", "/v1/verify-rules", "/v1/anchor", "/v1/receipt", "/v1/chat"]
AVAILABLE_ENDPOINTS = ["/health"] + PRODUCT_ENDPOINTS
HASH_PATTERN = re.compile(r"^[a-f0-9]{64,}$")
REGENERATED_NOTE = "Receipt regenerated - no anchor found"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _valid_hash(value: Any) -> bool:
    return isinstance(value, str) and bool(HASH_PATTERN.match(value))


def _signed(signer: Signer, body: Dict[str, Any]) -> Dict[str, Any]:
    return {**body, "signature": signer.sign(body)}


def create_app(
    config: Config | None = None,
    env: Mapping[str, str] | None = None,
    http: httpx.AsyncClient | None = None,
    manifest: Manifest | None = None,
) -> FastAPI:
    """Build the app with its shared state.

    ``env`` replaces ``os.environ`` for credential and signing key lookup,
    ``http`` replaces the pooled upstream client.
    """
    config = config or get_config()
    app = FastAPI(title="Concord")

    breaker = BreakerRegistry(config.breaker_threshold, config.breaker_cooldown_seconds)
    client = ProviderClient(http, timeout=config.request_timeout_seconds, max_tokens=config.max_tokens)
    audit = AuditLog(config.audit_path) if config.audit_path else None
    app.state.config = config
    app.state.breaker = breaker
    app.state.client = client
    app.state.handler = ChatHandler(config, client, breaker, env=env, audit=audit)
    app.state.signer = Signer.from_env(config, env)
    app.state.receipts = ReceiptStore()
    app.state.manifest = manifest or Manifest.from_assets(config.assets_dir)

    limiter = FixedWindowLimiter([RateLimitRule.from_dict(rule) for rule in config.rate_limits])
    app.add_middleware(RateLimitMiddleware, limiter=limiter)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await client.aclose()

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content={
                "ok": False,
                "error": "not_found",
                "path": request.url.path,
                "availableEndpoints": AVAILABLE_ENDPOINTS,
            })
        return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": str(exc.detail)})

    @app.exception_handler(SigningError)
    async def _signing_error(request: Request, exc: SigningError):
        logger.error(f"Signing failed on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.url.path}", exc_info=exc)
        return JSONResponse(status_code=500, content={"ok": False, "error": "internal_error"})

    @app.get("/health")
    async def health():
        return {
            "ok": True,
            "time": _utc_now(),
            "product": config.product_id,
            "endpoints": PRODUCT_ENDPOINTS,
            "breakers": breaker.snapshot(),
        }

    @app.post("/v1/chat")
    async def chat(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            payload = None
        result = await request.app.state.handler.handle_chat(payload)
        return JSONResponse(status_code=result.status_code, content=result.body)

    @app.get("/v1/verify")
    async def verify(request: Request):
        current: Manifest = request.app.state.manifest
        return _signed(request.app.state.signer, {
            "constitutionHash": current.constitution_hash,
            "modelPackHash": current.model_pack_label,
            "policy": config.policy_text,
            "product": config.product_id,
            "timestamp": _utc_now(),
        })

    @app.get("/v1/verify-rules")
    async def verify_rules(request: Request):
        current: Manifest = request.app.state.manifest
        return _signed(request.app.state.signer, {
            "product": config.product_id,
            "rules": current.rules,
            "rulesPackHash": current.rules_pack_hash,
            "issuedAt": _utc_now(),
        })

    @app.post("/v1/anchor")
    async def anchor(request: Request):
        try:
            payload = await request.json()
        except ValueError:
            payload = None
        digest = payload.get("hash") if isinstance(payload, dict) else None
        if not _valid_hash(digest):
            return JSONResponse(status_code=400, content={"ok": False, "error": "invalid_hash"})
        current: Manifest = request.app.state.manifest
        issued_at = _utc_now()
        receipt = _signed(request.app.state.signer, {
            "ok": True,
            "chain": "eth",
            "txid": hashlib.sha512((digest + issued_at).encode("utf-8")).hexdigest()[:64],
            "hash": digest,
            "manifestHash": current.model_pack_hash,
            "constitutionHash": current.constitution_hash,
            "product": config.product_id,
            "issuedAt": issued_at,
        })
        request.app.state.receipts.put(digest, receipt)
        logger.info(f"Anchored {digest[:12]}... txid={receipt['txid'][:12]}...")
        return receipt

    @app.get("/v1/receipt")
    async def receipt(request: Request, hash: str = ""):
        if not _valid_hash(hash):
            return JSONResponse(status_code=400, content={"ok": False, "error": "invalid_hash"})
        stored = request.app.state.receipts.get(hash)
        if stored is not None:
            return stored
        current: Manifest = request.app.state.manifest
        return _signed(request.app.state.signer, {
            "ok": True,
            "chain": None,
            "txid": None,
            "hash": hash,
            "manifestHash": current.model_pack_hash,
            "constitutionHash": current.constitution_hash,
            "product": config.product_id,
            "issuedAt": _utc_now(),
            "note": REGENERATED_NOTE,
        })

    return app


def main(host: str | None = None, port: int | None = None):
    import uvicorn
    config = get_config()
    configure_logging(config.log_level)
    host = host or config.server.get("host", "127.0.0.1")
    port = int(port or config.server.get("port", 8099))
    uvicorn.run("concord.server:create_app", factory=True, host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
