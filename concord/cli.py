"""Command line interface for Concord."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from concord.audit import AuditLog
from concord.breaker import BreakerRegistry
from concord.chat import ChatHandler, ChatResponse
from concord.config import Config, configure_logging, get_config
from concord.manifest import Manifest
from concord.models.client import ProviderClient


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2))


async def _run_chat(config: Config, payload: dict) -> ChatResponse:
    client = ProviderClient(timeout=config.request_timeout_seconds, max_tokens=config.max_tokens)
    breaker = BreakerRegistry(config.breaker_threshold, config.breaker_cooldown_seconds)
    audit = AuditLog(config.audit_path) if config.audit_path else None
    handler = ChatHandler(config, client, breaker, audit=audit)
    try:
        return await handler.handle_chat(payload)
    finally:
        await client.aclose()


def cmd_serve(args: argparse.Namespace) -> int:
    from concord.server import main as serve
    serve(host=args.host, port=args.port)
    return 0


def cmd_chat(args: argparse.Namespace) -> int:
    config = get_config()
    payload: dict[str, Any] = {
        "messages": [{"role": "user", "content": args.text}],
        "backend": args.backend,
    }
    if args.model:
        payload["model"] = args.model
    if args.temperature is not None:
        payload["temperature"] = args.temperature
    result = asyncio.run(_run_chat(config, payload))
    _print(result.body)
    return 0 if result.ok else 1


def cmd_manifest(args: argparse.Namespace) -> int:
    config = get_config()
    manifest = Manifest.from_assets(config.assets_dir)
    _print({"product": config.product_id, "assetsDir": str(config.assets_dir), **manifest.to_dict()})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="concord")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)

    chat = sub.add_parser("chat", help="Send one user message through the chat handler")
    chat.add_argument("text")
    chat.add_argument("--backend", default="openai")
    chat.add_argument("--model")
    chat.add_argument("--temperature", type=float)

    sub.add_parser("manifest", help="Print the asset manifest")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command != "serve":
        configure_logging(args.log_level or get_config().log_level)
    if args.command == "serve":
        return cmd_serve(args)
    if args.command == "chat":
        return cmd_chat(args)
    if args.command == "manifest":
        return cmd_manifest(args)
    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
