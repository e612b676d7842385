"""Configuration loader for Concord."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List
import logging
import os
import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "concord" / "config.yaml"

DEFAULT_ORIGINS = ["http://localhost:5173", "http://localhost:3000"]

DEFAULT_SYSTEM_PROMPT = (
    "You are the Concord assistant. Core principles:\n"
    "1. Be precise, auditable, and stateless - never store PII\n"
    "2. Provide reproducible steps and hash-based references\n"
    "3. Never claim legal authority - give transparent reasoning with disclaimers\n"
    "4. For file analysis: the web service does client-side hashing only\n"
    "5. All evidence handling follows chain-of-custody practices\n"
    "6. Be concise but thorough - favor clarity over verbosity"
)

DEFAULT_RATE_LIMITS = [
    {"path": "/v1/chat", "limit": 30, "window_seconds": 60},
    {"path": "/v1/anchor", "limit": 30, "window_seconds": 60},
    {"path": "/v1/receipt", "limit": 300, "window_seconds": 900},
    {"path": "/v1/verify", "limit": 300, "window_seconds": 900},
]

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _env_int(name: str) -> int | None:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _env_float(name: str) -> float | None:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def load_config(
    default_path: Path | None = None,
    user_path: Path | None = None,
) -> Dict[str, Any]:
    default_path = default_path or DEFAULT_CONFIG_PATH
    user_path = user_path or USER_CONFIG_PATH
    data: Dict[str, Any] = {}
    if default_path.exists():
        data = yaml.safe_load(default_path.read_text()) or {}
    if user_path.exists():
        override = yaml.safe_load(user_path.read_text()) or {}
        data = _deep_merge(data, override)

    # Environment overrides - Server
    host = os.getenv("CONCORD_HOST")
    if host:
        data.setdefault("server", {})["host"] = host
    port = _env_int("CONCORD_PORT")
    if port is not None:
        data.setdefault("server", {})["port"] = port

    log_level = os.getenv("CONCORD_LOG_LEVEL")
    if log_level:
        data.setdefault("logging", {})["level"] = log_level.upper()

    origins = os.getenv("CONCORD_ALLOWED_ORIGINS")
    if origins:
        data.setdefault("cors", {})["allowed_origins"] = [
            item.strip() for item in origins.split(",") if item.strip()
        ]

    assets_dir = os.getenv("CONCORD_ASSETS_DIR")
    if assets_dir:
        data["assets_dir"] = assets_dir

    audit_path = os.getenv("CONCORD_AUDIT_PATH")
    if audit_path:
        data["audit_path"] = audit_path

    # Environment overrides - Breaker
    threshold = _env_int("CONCORD_BREAKER_THRESHOLD")
    if threshold is not None:
        data.setdefault("breaker", {})["threshold"] = threshold
    cooldown = _env_float("CONCORD_BREAKER_COOLDOWN")
    if cooldown is not None:
        data.setdefault("breaker", {})["cooldown_seconds"] = cooldown

    return data


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def server(self) -> Dict[str, Any]:
        return self.raw.get("server", {})

    @property
    def providers(self) -> Dict[str, Any]:
        return self.raw.get("providers", {}) or {}

    @property
    def breaker(self) -> Dict[str, Any]:
        return self.raw.get("breaker", {}) or {}

    @property
    def breaker_threshold(self) -> int:
        return int(self.breaker.get("threshold", 3))

    @property
    def breaker_cooldown_seconds(self) -> float:
        return float(self.breaker.get("cooldown_seconds", 60.0))

    @property
    def consensus(self) -> Dict[str, Any]:
        return self.raw.get("consensus", {}) or {}

    @property
    def consensus_threshold(self) -> float:
        return float(self.consensus.get("threshold", 0.6))

    @property
    def limits(self) -> Dict[str, Any]:
        return self.raw.get("limits", {}) or {}

    @property
    def max_messages(self) -> int:
        return int(self.limits.get("max_messages", 30))

    @property
    def max_content_chars(self) -> int:
        return int(self.limits.get("max_content_chars", 6000))

    @property
    def default_temperature(self) -> float:
        return float(self.limits.get("default_temperature", 0.2))

    @property
    def request_timeout_seconds(self) -> float:
        """Hard timeout for a single upstream model call. Default 30 seconds."""
        return float(self.limits.get("request_timeout_seconds", 30.0))

    @property
    def max_tokens(self) -> int:
        return int(self.limits.get("max_tokens", 2048))

    @property
    def system_prompt(self) -> str:
        return str(self.raw.get("system_prompt") or DEFAULT_SYSTEM_PROMPT).strip()

    @property
    def cors_origins(self) -> List[str]:
        origins = (self.raw.get("cors", {}) or {}).get("allowed_origins") or []
        return list(origins) or list(DEFAULT_ORIGINS)

    @property
    def rate_limits(self) -> List[Dict[str, Any]]:
        rules = self.raw.get("rate_limits")
        if rules is None:
            return [dict(rule) for rule in DEFAULT_RATE_LIMITS]
        return [dict(rule) for rule in rules if isinstance(rule, dict) and rule.get("path")]

    @property
    def product_id(self) -> str:
        return str(self.raw.get("product_id", "CONCORD-WEB"))

    @property
    def policy_text(self) -> str:
        return str(self.raw.get("policy_text", ""))

    @property
    def signing(self) -> Dict[str, Any]:
        return self.raw.get("signing", {}) or {}

    @property
    def issuer(self) -> str:
        return str(self.signing.get("issuer", "concord"))

    @property
    def signing_key_env(self) -> str:
        return str(self.signing.get("key_env", "CONCORD_SIGNING_KEY"))

    @property
    def signature_ttl_seconds(self) -> int:
        return int(self.signing.get("ttl_seconds", 3600))

    @property
    def assets_dir(self) -> Path:
        default = Path(__file__).resolve().parent.parent / "assets"
        return Path(self.raw.get("assets_dir") or default).expanduser()

    @property
    def audit_path(self) -> Path | None:
        path = self.raw.get("audit_path")
        return Path(path).expanduser() if path else None

    @property
    def log_level(self) -> str:
        return str((self.raw.get("logging", {}) or {}).get("level", "INFO")).upper()


def get_config() -> Config:
    return Config(load_config())


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
