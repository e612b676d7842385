"""Provider-agnostic chat request handling.

``ChatHandler.handle_chat`` validates an inbound request, swaps in the
server system prompt, resolves the backend and either runs the consensus
fan-out or a single direct model call. Every path, including unexpected
errors, ends in a ``ChatResponse`` envelope.
"""
from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from concord.audit import AuditLog
from concord.breaker import BreakerRegistry
from concord.config import Config
from concord.consensus import ConsensusController, ConsensusResult, Verdict
from concord.models.backends import (
    BackendSpec,
    SUPPORTED_BACKENDS,
    UnknownBackendError,
    backend_specs,
    resolve_backend,
)
from concord.models.client import ProviderClient

logger = logging.getLogger(__name__)

ROLES = {"system", "user", "assistant"}


@dataclass
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatResponse:
    status_code: int
    body: Dict[str, Any]

    @property
    def ok(self) -> bool:
        return bool(self.body.get("ok"))


class ChatRejected(Exception):
    """A request the handler refuses; carries the envelope error code."""

    def __init__(
        self,
        code: str,
        status_code: int = 400,
        details: Any = None,
        extra: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(code)
        self.code = code
        self.status_code = status_code
        self.details = details
        self.extra = extra or {}

    def to_response(self) -> ChatResponse:
        body: Dict[str, Any] = {"ok": False, "error": self.code}
        if self.details is not None:
            body["details"] = self.details
        body.update(self.extra)
        return ChatResponse(self.status_code, body)


@dataclass
class ChatRequest:
    messages: List[ChatMessage]
    backend: BackendSpec
    model: str | None
    temperature: float
    api_key: str = field(repr=False, default="")


class ChatHandler:
    def __init__(
        self,
        config: Config,
        client: ProviderClient,
        breaker: BreakerRegistry,
        env: Mapping[str, str] | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.breaker = breaker
        self.env = env
        self.audit = audit
        self.specs = backend_specs(config.providers)

    def prepare_messages(self, raw: Any) -> List[ChatMessage]:
        """Validate client messages and prepend the server system prompt."""
        if not isinstance(raw, list) or not raw:
            raise ChatRejected("messages array required")
        messages = [ChatMessage("system", self.config.system_prompt)]
        for item in raw:
            role = item.get("role") if isinstance(item, dict) else None
            if not isinstance(role, str) or role not in ROLES:
                raise ChatRejected("invalid_message")
            if role == "system":
                continue
            messages.append(ChatMessage(role, item.get("content")))
        if len(messages) > self.config.max_messages:
            raise ChatRejected("too_many_messages")
        limit = self.config.max_content_chars
        for message in messages:
            if not isinstance(message.content, str) or len(message.content) > limit:
                raise ChatRejected("message_too_long")
        return messages

    def parse_request(self, payload: Any) -> ChatRequest:
        if not isinstance(payload, dict):
            raise ChatRejected("messages array required")
        messages = self.prepare_messages(payload.get("messages"))

        temperature = payload.get("temperature")
        if temperature is None:
            temperature = self.config.default_temperature
        elif (
            isinstance(temperature, bool)
            or not isinstance(temperature, (int, float))
            or not math.isfinite(temperature)
        ):
            raise ChatRejected("invalid_temperature")

        model = payload.get("model")
        if model is not None and (not isinstance(model, str) or not model.strip()):
            raise ChatRejected("invalid_model")

        name = payload.get("backend") or payload.get("provider") or "openai"
        try:
            backend = resolve_backend(name)
        except UnknownBackendError as exc:
            raise ChatRejected(
                "unknown_provider",
                details=exc.name,
                extra={"supportedProviders": list(SUPPORTED_BACKENDS)},
            ) from None

        spec = self.specs[backend]
        api_key = spec.api_key(self.env if self.env is not None else os.environ)
        if not api_key:
            raise ChatRejected(
                "provider_not_configured",
                details={"backend": backend.value, "env": spec.api_key_env},
            )
        return ChatRequest(
            messages=messages,
            backend=spec,
            model=model.strip() if model else None,
            temperature=float(temperature),
            api_key=api_key,
        )

    async def handle_chat(self, payload: Any) -> ChatResponse:
        try:
            request = self.parse_request(payload)
            if request.backend.fan_out:
                response = await self._fan_out(request)
            else:
                response = await self._single(request)
        except ChatRejected as exc:
            self._audit("chat.rejected", {"error": exc.code})
            return exc.to_response()
        except Exception:
            logger.error("Chat request failed", exc_info=True)
            self._audit("chat.rejected", {"error": "internal_error"})
            return ChatResponse(500, {"ok": False, "error": "internal_error"})
        return response

    async def _fan_out(self, request: ChatRequest) -> ChatResponse:
        spec = request.backend
        controller = ConsensusController(
            self.client,
            self.breaker,
            spec,
            request.api_key,
            threshold=self.config.consensus_threshold,
            timeout=self.config.request_timeout_seconds,
        )
        result = await controller.fan_out(
            [m.to_dict() for m in request.messages],
            request.temperature,
            request.model,
        )
        if not result.successes:
            raise ChatRejected("all_models_failed", status_code=502, details=list(result.failures[:2]))
        if result.verdict is Verdict.FAIL or result.winner is None:
            raise ChatRejected(
                "all_models_failed",
                status_code=502,
                details={
                    "reason": "no_consensus",
                    "triedModels": result.succeeded_models,
                    "pairScores": [pair.to_dict() for pair in result.pair_scores],
                    "errors": list(result.failures),
                },
            )
        self._audit_consensus(spec, result)
        return ChatResponse(200, {
            "ok": True,
            "backend": spec.backend.value,
            "verdict": result.verdict.value,
            "winnerModel": result.winner.model,
            "message": result.winner.content,
            "triedModels": result.succeeded_models,
            "errors": list(result.failures),
        })

    async def _single(self, request: ChatRequest) -> ChatResponse:
        spec = request.backend
        model = request.model or spec.default_model
        outcome = await self.client.call_model(
            spec,
            model,
            [m.to_dict() for m in request.messages],
            request.temperature,
            request.api_key,
            timeout=self.config.request_timeout_seconds,
        )
        if not outcome.ok:
            raise ChatRejected("upstream_error", status_code=502, details=outcome.error)
        self._audit("chat.complete", {"backend": spec.backend.value, "model": model})
        return ChatResponse(200, {
            "ok": True,
            "backend": spec.backend.value,
            "model": model,
            "result": outcome.raw,
            "message": outcome.content,
        })

    def _audit_consensus(self, spec: BackendSpec, result: ConsensusResult) -> None:
        self._audit("chat.complete", {
            "backend": spec.backend.value,
            "verdict": result.verdict.value,
            "winner_model": result.winner.model if result.winner else None,
            "tried_models": result.succeeded_models,
            "error_count": len(result.failures),
        })

    def _audit(self, event: str, data: Dict[str, Any]) -> None:
        if self.audit is not None:
            self.audit.log(event, data)
