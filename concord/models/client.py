"""Async HTTP client for upstream chat completion APIs."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from concord.models.backends import BackendSpec

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
REASON_LIMIT = 200


@dataclass
class ModelCallOutcome:
    """Result of one model call; ``error`` holds the failure reason when not ok."""
    model: str
    ok: bool = True
    content: str = ""
    error: Optional[str] = None
    status_code: Optional[int] = None
    duration_ms: float = field(default=0.0, compare=False)
    raw: Optional[Dict[str, Any]] = None
    breaker_rejected: bool = False


def _truncate(text: str, limit: int = REASON_LIMIT) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= limit else text[:limit] + "..."


def extract_openai_content(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0] if isinstance(choices[0], dict) else {}
    message = first.get("message") or {}
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else ""


def extract_anthropic_content(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    parts = data.get("content") or []
    if not isinstance(parts, list):
        return ""
    return "".join(
        part.get("text", "") for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    )


class ProviderClient:
    """One-shot completion calls against OpenAI-compatible and Anthropic APIs.

    The client never raises for upstream problems: timeouts, transport
    errors, unencodable bodies and non-2xx answers all come back as a failed
    :class:`ModelCallOutcome`. ``timeout`` is a hard deadline for the whole
    call, body download included. Breaker bookkeeping is left to the caller.
    """

    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        max_tokens: int = 2048,
    ) -> None:
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            limits=httpx.Limits(
                max_connections=100,
                max_keepalive_connections=20,
                keepalive_expiry=15.0,
            ),
        )
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    def build_request(
        self,
        spec: BackendSpec,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float,
        api_key: str,
    ) -> tuple[str, Dict[str, str], Dict[str, Any]]:
        if spec.wire == "anthropic":
            system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
            body: Dict[str, Any] = {
                "model": model,
                "max_tokens": self.max_tokens,
                "temperature": temperature,
                "messages": [
                    {
                        "role": "assistant" if m.get("role") == "assistant" else "user",
                        "content": m["content"],
                    }
                    for m in messages
                    if m.get("role") != "system"
                ],
            }
            if system:
                body["system"] = system
            headers = {
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "Content-Type": "application/json",
            }
            return f"{spec.base_url}/messages", headers, body

        body = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        return f"{spec.base_url}/chat/completions", headers, body

    async def call_model(
        self,
        spec: BackendSpec,
        model: str,
        messages: List[Dict[str, str]],
        temperature: float,
        api_key: str,
        timeout: float | None = None,
    ) -> ModelCallOutcome:
        timeout = self.timeout if timeout is None else timeout
        url, headers, body = self.build_request(spec, model, messages, temperature, api_key)
        backend = spec.backend.value

        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self.http.post(url, json=body, headers=headers, timeout=timeout),
                timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            duration_ms = (time.perf_counter() - start) * 1000
            logger.warning(f"{backend} {model} timed out after {timeout:g}s")
            return ModelCallOutcome(
                model=model,
                ok=False,
                error=f"{backend} {model} timeout after {timeout:g}s",
                duration_ms=duration_ms,
            )
        except httpx.HTTPError as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.warning(f"{backend} {model} transport error: {type(exc).__name__}")
            return ModelCallOutcome(
                model=model,
                ok=False,
                error=f"{backend} {model} transport error: {_truncate(str(exc) or type(exc).__name__)}",
                duration_ms=duration_ms,
            )
        except ValueError as exc:
            logger.warning(f"{backend} {model} request body could not be encoded")
            return ModelCallOutcome(
                model=model,
                ok=False,
                error=f"{backend} {model} invalid request: {_truncate(str(exc))}",
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        duration_ms = (time.perf_counter() - start) * 1000
        if not response.is_success:
            logger.warning(f"{backend} {model} returned HTTP {response.status_code}")
            return ModelCallOutcome(
                model=model,
                ok=False,
                error=f"{backend} {model} {response.status_code}: {_truncate(response.text)}",
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        try:
            data = response.json()
        except ValueError:
            logger.warning(f"{backend} {model} returned a non-JSON body")
            return ModelCallOutcome(
                model=model,
                ok=False,
                error=f"{backend} {model} invalid JSON response",
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        if spec.wire == "anthropic":
            content = extract_anthropic_content(data)
        else:
            content = extract_openai_content(data)
        logger.debug(f"{backend} {model} answered in {duration_ms:.0f}ms ({len(content)} chars)")
        return ModelCallOutcome(
            model=model,
            ok=True,
            content=content,
            status_code=response.status_code,
            duration_ms=duration_ms,
            raw=data if isinstance(data, dict) else {"data": data},
        )
