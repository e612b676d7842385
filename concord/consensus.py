"""Concurrent multi-model fan-out with 2-of-N similarity consensus.

The primary backend is asked the same question by every model on its
roster at once. Models whose breaker is open are skipped. Answers are
compared pairwise and an answer is only returned when at least two
models corroborate each other, or when a single model was all we got.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from concord import similarity
from concord.breaker import BreakerRegistry
from concord.models.backends import BackendSpec
from concord.models.client import ModelCallOutcome, ProviderClient

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.6


class Verdict(str, Enum):
    PASS = "pass"
    WEAK = "weak"
    FAIL = "fail"


@dataclass(frozen=True)
class PairScore:
    i: int
    j: int
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {"i": self.i, "j": self.j, "score": round(self.score, 4)}


@dataclass(frozen=True)
class ConsensusResult:
    verdict: Verdict
    winner: Optional[ModelCallOutcome]
    successes: Tuple[ModelCallOutcome, ...] = ()
    failures: Tuple[str, ...] = ()
    pair_scores: Tuple[PairScore, ...] = field(default_factory=tuple)

    @property
    def succeeded_models(self) -> List[str]:
        return [outcome.model for outcome in self.successes]


def reconcile(
    successes: List[ModelCallOutcome],
    failures: List[str] | None = None,
    threshold: float = DEFAULT_THRESHOLD,
) -> ConsensusResult:
    """Pick a verdict and winner from the successful answers."""
    successes = list(successes)
    failures = list(failures or [])
    if not successes:
        return ConsensusResult(Verdict.FAIL, None, (), tuple(failures))
    if len(successes) == 1:
        return ConsensusResult(Verdict.WEAK, successes[0], tuple(successes), tuple(failures))

    pairs: List[PairScore] = []
    for i in range(len(successes)):
        for j in range(i + 1, len(successes)):
            pairs.append(PairScore(i, j, similarity.score(successes[i].content, successes[j].content)))

    best = pairs[0]
    for pair in pairs[1:]:
        if pair.score > best.score:
            best = pair

    if best.score < threshold:
        return ConsensusResult(Verdict.FAIL, None, tuple(successes), tuple(failures), tuple(pairs))

    first, second = successes[best.i], successes[best.j]
    winner = second if len(second.content) > len(first.content) else first
    return ConsensusResult(Verdict.PASS, winner, tuple(successes), tuple(failures), tuple(pairs))


class ConsensusController:
    """Fans a conversation out to a backend's roster and reconciles the answers.

    Args:
        client: Provider client used for every model call.
        breaker: Shared breaker registry; consulted before dispatch and
            updated after every settled call.
        spec: The fan-out capable backend.
        api_key: Credential for ``spec``.
        threshold: Minimum pair similarity for a ``pass`` verdict.
        timeout: Per-call timeout in seconds.
    """

    def __init__(
        self,
        client: ProviderClient,
        breaker: BreakerRegistry,
        spec: BackendSpec,
        api_key: str,
        threshold: float = DEFAULT_THRESHOLD,
        timeout: float = 30.0,
    ) -> None:
        if not spec.roster:
            raise ValueError(f"backend '{spec.backend.value}' has no model roster")
        self.client = client
        self.breaker = breaker
        self.spec = spec
        self.api_key = api_key
        self.threshold = threshold
        self.timeout = timeout

    def candidates(self, model_override: str | None = None) -> List[Tuple[str, bool]]:
        """Models to dispatch, each flagged as forced past the breaker or not."""
        if model_override:
            return [(model_override, True)]
        allowed = [model for model in self.spec.roster if self.breaker.is_call_allowed(model)]
        if not allowed:
            fallback = self.spec.roster[0]
            logger.warning(f"All {self.spec.backend.value} breakers open; forcing {fallback}")
            return [(fallback, True)]
        return [(model, False) for model in allowed]

    async def _dispatch(
        self,
        model: str,
        forced: bool,
        messages: List[Dict[str, str]],
        temperature: float,
    ) -> ModelCallOutcome:
        if not forced and not self.breaker.is_call_allowed(model):
            return ModelCallOutcome(
                model=model,
                ok=False,
                error=f"breaker_open:{model}",
                breaker_rejected=True,
            )
        return await self.client.call_model(
            self.spec,
            model,
            messages,
            temperature,
            self.api_key,
            timeout=self.timeout,
        )

    async def fan_out(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        model_override: str | None = None,
    ) -> ConsensusResult:
        candidates = self.candidates(model_override)
        settled = await asyncio.gather(
            *(self._dispatch(model, forced, messages, temperature) for model, forced in candidates),
            return_exceptions=True,
        )

        successes: List[ModelCallOutcome] = []
        failures: List[str] = []
        for (model, _forced), outcome in zip(candidates, settled):
            if isinstance(outcome, BaseException):
                logger.error(f"Unexpected error calling {model}", exc_info=outcome)
                outcome = ModelCallOutcome(
                    model=model,
                    ok=False,
                    error=f"{model} internal error: {type(outcome).__name__}",
                )
            if outcome.ok:
                self.breaker.report_success(model)
                successes.append(outcome)
                continue
            if not outcome.breaker_rejected:
                self.breaker.report_failure(model)
            failures.append(outcome.error or f"{model} failed")

        result = reconcile(successes, failures, self.threshold)
        logger.info(
            f"Fan-out on {self.spec.backend.value}: {len(successes)}/{len(candidates)} succeeded, "
            f"verdict={result.verdict.value}"
            + (f", winner={result.winner.model}" if result.winner else "")
        )
        return result
