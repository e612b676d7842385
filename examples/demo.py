#!/usr/bin/env python3
"""
Concord Demo -- how the 2-of-N consensus reconciles model answers.

Run:
    python examples/demo.py            # canned answers, no network
    python examples/demo.py --live     # real fan-out, needs OPENAI_API_KEY
"""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Ensure concord is importable when running from the repo root.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from concord.breaker import BreakerRegistry
from concord.chat import ChatHandler
from concord.config import get_config
from concord.consensus import reconcile
from concord.models.client import ModelCallOutcome, ProviderClient


DEMO_CASES = [
    {
        "description": "Two models agree, one wanders off.",
        "answers": {
            "gpt-5-mini": "The sky is blue today",
            "gpt-4o-mini": "The sky is blue today indeed",
            "gpt-4o": "Bananas are yellow",
        },
    },
    {
        "description": "Every model says something different.",
        "answers": {
            "gpt-5-mini": "Paris is the capital",
            "gpt-4o-mini": "Bananas are yellow",
            "gpt-4o": "Quantum entanglement experiments",
        },
    },
    {
        "description": "Only one model answered.",
        "answers": {"gpt-4o": "Lonely but available"},
    },
]


def run_offline() -> None:
    for i, case in enumerate(DEMO_CASES, 1):
        successes = [
            ModelCallOutcome(model=model, content=content)
            for model, content in case["answers"].items()
        ]
        result = reconcile(successes)
        print(f"\n{'=' * 72}")
        print(f"  Case {i}: {case['description']}")
        print(f"{'=' * 72}")
        for pair in result.pair_scores:
            print(f"  {successes[pair.i].model} vs {successes[pair.j].model}: {pair.score:.2f}")
        print(f"  Verdict: {result.verdict.value}")
        if result.winner:
            print(f"  Winner:  {result.winner.model} -> {result.winner.content!r}")


async def run_live(question: str) -> None:
    config = get_config()
    client = ProviderClient(timeout=config.request_timeout_seconds, max_tokens=config.max_tokens)
    handler = ChatHandler(config, client, BreakerRegistry(config.breaker_threshold, config.breaker_cooldown_seconds))
    try:
        result = await handler.handle_chat({"messages": [{"role": "user", "content": question}]})
    finally:
        await client.aclose()
    print(f"  HTTP {result.status_code}")
    for key, value in result.body.items():
        print(f"  {key}: {value}")


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Show Concord consensus on demo answers.")
    parser.add_argument("--live", action="store_true", help="Ask the configured OpenAI roster instead.")
    parser.add_argument("--question", default="What colour is the sky on a clear day?")
    args = parser.parse_args()

    if args.live:
        asyncio.run(run_live(args.question))
    else:
        run_offline()


if __name__ == "__main__":
    main()
