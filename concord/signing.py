"""EdDSA (Ed25519) JWT signing for verification payloads and receipts."""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Mapping

import jwt

logger = logging.getLogger(__name__)

ALGO = "EdDSA"


class SigningError(RuntimeError):
    """Raised when no signing key is configured or the key cannot be loaded."""


def _load_key(key_material: str) -> Any:
    if "BEGIN PRIVATE KEY" in key_material:
        return key_material
    try:
        jwk = json.loads(key_material)
    except json.JSONDecodeError:
        raise SigningError("signing key is neither a PKCS#8 PEM nor a JWK") from None
    try:
        return jwt.PyJWK(jwk, algorithm=ALGO).key
    except (jwt.PyJWKError, jwt.InvalidKeyError, TypeError, ValueError) as exc:
        raise SigningError(f"invalid signing JWK: {exc}") from None


class Signer:
    """Signs JSON payloads as compact JWTs carrying ``iat``, ``iss`` and ``exp``.

    The key is parsed lazily on first use so a server without a configured
    key still starts; the signed routes then answer with an error.
    """

    def __init__(self, key_material: str | None, issuer: str = "concord", ttl_seconds: int = 3600) -> None:
        self.key_material = (key_material or "").strip()
        self.issuer = issuer
        self.ttl_seconds = ttl_seconds
        self._key: Any = None

    @classmethod
    def from_env(cls, config, env: Mapping[str, str] | None = None) -> "Signer":
        env = os.environ if env is None else env
        key_material = env.get(config.signing_key_env, "")
        if not key_material:
            logger.error(f"{config.signing_key_env} not configured; signed endpoints will fail")
        return cls(key_material, issuer=config.issuer, ttl_seconds=config.signature_ttl_seconds)

    @property
    def configured(self) -> bool:
        return bool(self.key_material)

    def _signing_key(self) -> Any:
        if not self.key_material:
            raise SigningError("signing key not set")
        if self._key is None:
            self._key = _load_key(self.key_material)
        return self._key

    def sign(self, payload: Dict[str, Any]) -> str:
        now = int(time.time())
        claims = dict(payload)
        claims.update({"iat": now, "iss": self.issuer, "exp": now + self.ttl_seconds})
        try:
            return jwt.encode(claims, self._signing_key(), algorithm=ALGO, headers={"typ": "JWT"})
        except SigningError:
            raise
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            raise SigningError(f"failed to sign payload: {exc}") from None
