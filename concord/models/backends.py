"""Upstream completion backends known to Concord."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping


class Backend(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    DEEPSEEK = "deepseek"


SUPPORTED_BACKENDS = [backend.value for backend in Backend]


class UnknownBackendError(ValueError):
    """Raised when a request names a backend Concord does not serve."""

    def __init__(self, name: str, supported: List[str] | None = None) -> None:
        self.name = name
        self.supported = list(supported or SUPPORTED_BACKENDS)
        super().__init__(f"unknown backend '{name}' (supported: {', '.join(self.supported)})")


@dataclass
class BackendSpec:
    backend: Backend
    wire: str  # openai (chat/completions) or anthropic (messages)
    base_url: str
    api_key_env: str
    default_model: str
    roster: List[str] = field(default_factory=list)

    @property
    def fan_out(self) -> bool:
        """Backends with a model roster are queried through the consensus controller."""
        return bool(self.roster)

    def api_key(self, env: Mapping[str, str]) -> str:
        return (env.get(self.api_key_env) or "").strip()


BACKENDS: Dict[Backend, BackendSpec] = {
    Backend.OPENAI: BackendSpec(
        backend=Backend.OPENAI,
        wire="openai",
        base_url="https://api.openai.com/v1",
        api_key_env="OPENAI_API_KEY",
        default_model="gpt-5-mini",
        roster=["gpt-5-mini", "gpt-4o-mini", "gpt-4o"],
    ),
    Backend.ANTHROPIC: BackendSpec(
        backend=Backend.ANTHROPIC,
        wire="anthropic",
        base_url="https://api.anthropic.com/v1",
        api_key_env="ANTHROPIC_API_KEY",
        default_model="claude-3-5-haiku-20241022",
    ),
    Backend.DEEPSEEK: BackendSpec(
        backend=Backend.DEEPSEEK,
        wire="openai",
        base_url="https://api.deepseek.com",
        api_key_env="DEEPSEEK_API_KEY",
        default_model="deepseek-chat",
    ),
}


def resolve_backend(name: Any) -> Backend:
    key = str(name or "").strip().lower()
    try:
        return Backend(key)
    except ValueError:
        raise UnknownBackendError(str(name)) from None


def backend_specs(providers: Dict[str, Any] | None = None) -> Dict[Backend, BackendSpec]:
    """Built-in backends overlaid with the ``providers`` config section."""
    providers = providers or {}
    specs: Dict[Backend, BackendSpec] = {}
    for backend, builtin in BACKENDS.items():
        override = providers.get(backend.value) or {}
        roster = override.get("roster", builtin.roster)
        specs[backend] = BackendSpec(
            backend=backend,
            wire=builtin.wire,
            base_url=str(override.get("base_url") or builtin.base_url).rstrip("/"),
            api_key_env=str(override.get("api_key_env") or builtin.api_key_env),
            default_model=str(override.get("default_model") or builtin.default_model),
            roster=[str(model) for model in (roster or [])],
        )
    return specs
