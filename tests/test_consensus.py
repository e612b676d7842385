"""Tests for concord.consensus."""
import asyncio
import unittest

from concord.breaker import BreakerRegistry
from concord.consensus import ConsensusController, Verdict, reconcile
from concord.models.backends import BACKENDS, Backend
from concord.models.client import ModelCallOutcome

ROSTER = ["gpt-5-mini", "gpt-4o-mini", "gpt-4o"]


class StubClient:
    """Answers per model from a table; exceptions in the table are raised."""

    def __init__(self, answers):
        self.answers = answers
        self.calls = []

    async def call_model(self, spec, model, messages, temperature, api_key, timeout=None):
        self.calls.append(model)
        answer = self.answers.get(model)
        if isinstance(answer, BaseException):
            raise answer
        if answer is None:
            return ModelCallOutcome(model=model, ok=False, error=f"openai {model} transport error: refused")
        return ModelCallOutcome(model=model, ok=True, content=answer)


def _ok(model, content):
    return ModelCallOutcome(model=model, ok=True, content=content)


def _run(controller, override=None):
    return asyncio.run(controller.fan_out([{"role": "user", "content": "hi"}], 0.2, override))


class TestReconcile(unittest.TestCase):
    def test_pass_picks_longer_of_best_pair(self):
        result = reconcile([
            _ok("a", "The sky is blue today"),
            _ok("b", "The sky is blue today indeed"),
            _ok("c", "Bananas are yellow"),
        ])
        self.assertEqual(result.verdict, Verdict.PASS)
        self.assertEqual(result.winner.model, "b")
        self.assertEqual([(p.i, p.j) for p in result.pair_scores], [(0, 1), (0, 2), (1, 2)])

    def test_fail_when_nothing_corroborates(self):
        result = reconcile([
            _ok("a", "Paris is the capital"),
            _ok("b", "Bananas are yellow"),
            _ok("c", "Quantum entanglement experiments"),
        ])
        self.assertEqual(result.verdict, Verdict.FAIL)
        self.assertIsNone(result.winner)
        self.assertEqual(len(result.successes), 3)

    def test_single_success_is_weak(self):
        result = reconcile([_ok("a", "Only me")], ["b failed", "c failed"])
        self.assertEqual(result.verdict, Verdict.WEAK)
        self.assertEqual(result.winner.content, "Only me")
        self.assertEqual(result.failures, ("b failed", "c failed"))

    def test_no_success_fails(self):
        result = reconcile([], ["x"])
        self.assertEqual(result.verdict, Verdict.FAIL)
        self.assertIsNone(result.winner)

    def test_equal_length_tie_goes_to_first(self):
        result = reconcile([_ok("a", "same words here"), _ok("b", "here same words")])
        self.assertEqual(result.verdict, Verdict.PASS)
        self.assertEqual(result.winner.model, "a")

    def test_first_maximum_pair_wins(self):
        result = reconcile([
            _ok("a", "red green blue"),
            _ok("b", "red green blue"),
            _ok("c", "red green blue extra words"),
            _ok("d", "red green blue extra words"),
        ])
        self.assertEqual(result.winner.model, "a")

    def test_threshold_is_inclusive(self):
        # 3 shared of 5 distinct tokens
        result = reconcile([_ok("a", "one two three four"), _ok("b", "one two three five")], threshold=0.6)
        self.assertEqual(result.verdict, Verdict.PASS)

    def test_idempotent(self):
        successes = [_ok("a", "The sky is blue"), _ok("b", "The sky is blue indeed")]
        self.assertEqual(reconcile(successes), reconcile(successes))


class TestConsensusController(unittest.TestCase):
    def setUp(self):
        self.breaker = BreakerRegistry(threshold=3, cooldown_seconds=60.0)
        self.spec = BACKENDS[Backend.OPENAI]

    def _controller(self, client):
        return ConsensusController(client, self.breaker, self.spec, "sk-test")

    def test_fan_out_pass(self):
        client = StubClient({
            "gpt-5-mini": "The sky is blue today",
            "gpt-4o-mini": "The sky is blue today indeed",
            "gpt-4o": "Bananas are yellow",
        })
        result = _run(self._controller(client))
        self.assertEqual(result.verdict, Verdict.PASS)
        self.assertEqual(result.winner.model, "gpt-4o-mini")
        self.assertEqual(sorted(client.calls), sorted(ROSTER))

    def test_zero_successes_trip_counters(self):
        client = StubClient({})
        result = _run(self._controller(client))
        self.assertEqual(result.verdict, Verdict.FAIL)
        self.assertEqual(len(result.failures), 3)
        for model in ROSTER:
            self.assertEqual(self.breaker.state(model).consecutive_failures, 1)

    def test_one_success_is_weak_and_heals(self):
        self.breaker.report_failure("gpt-4o")
        client = StubClient({"gpt-4o": "Only answer"})
        result = _run(self._controller(client))
        self.assertEqual(result.verdict, Verdict.WEAK)
        self.assertEqual(result.winner.model, "gpt-4o")
        self.assertEqual(self.breaker.state("gpt-4o").consecutive_failures, 0)

    def test_raised_exception_is_settled_as_failure(self):
        client = StubClient({
            "gpt-5-mini": RuntimeError("boom"),
            "gpt-4o-mini": "The sky is blue",
            "gpt-4o": "The sky is blue",
        })
        result = _run(self._controller(client))
        self.assertEqual(result.verdict, Verdict.PASS)
        self.assertEqual(len(result.failures), 1)
        self.assertIn("RuntimeError", result.failures[0])

    def test_open_breaker_skips_model(self):
        for _ in range(3):
            self.breaker.report_failure("gpt-4o")
        client = StubClient({"gpt-5-mini": "a b c", "gpt-4o-mini": "a b c", "gpt-4o": "a b c"})
        result = _run(self._controller(client))
        self.assertNotIn("gpt-4o", client.calls)
        self.assertEqual(result.succeeded_models, ["gpt-5-mini", "gpt-4o-mini"])

    def test_all_open_forces_first_roster_model(self):
        for model in ROSTER:
            for _ in range(3):
                self.breaker.report_failure(model)
        client = StubClient({"gpt-5-mini": "forced answer"})
        result = _run(self._controller(client))
        self.assertEqual(client.calls, ["gpt-5-mini"])
        self.assertEqual(result.verdict, Verdict.WEAK)
        self.assertTrue(self.breaker.is_call_allowed("gpt-5-mini"))

    def test_override_bypasses_breaker(self):
        for _ in range(3):
            self.breaker.report_failure("gpt-4o")
        client = StubClient({"gpt-4o": "override answer"})
        result = _run(self._controller(client), override="gpt-4o")
        self.assertEqual(client.calls, ["gpt-4o"])
        self.assertEqual(result.verdict, Verdict.WEAK)
        self.assertTrue(self.breaker.is_call_allowed("gpt-4o"))

    def test_breaker_rejection_not_counted(self):
        controller = self._controller(StubClient({}))
        for _ in range(3):
            self.breaker.report_failure("gpt-4o")
        outcome = asyncio.run(controller._dispatch("gpt-4o", False, [], 0.2))
        self.assertFalse(outcome.ok)
        self.assertTrue(outcome.breaker_rejected)
        self.assertEqual(outcome.error, "breaker_open:gpt-4o")

    def test_requires_roster(self):
        with self.assertRaises(ValueError):
            ConsensusController(StubClient({}), self.breaker, BACKENDS[Backend.ANTHROPIC], "k")


if __name__ == "__main__":
    unittest.main()
