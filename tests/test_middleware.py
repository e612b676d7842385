"""Tests for concord.middleware rate limiting."""
import unittest

from concord.middleware import FixedWindowLimiter, RateLimitRule


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestFixedWindowLimiter(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.limiter = FixedWindowLimiter(
            [RateLimitRule("/v1/chat", 2, 60), RateLimitRule("/v1/verify", 5, 900)],
            clock=self.clock,
        )

    def test_rule_matching(self):
        self.assertEqual(self.limiter.rule_for("/v1/chat").limit, 2)
        self.assertEqual(self.limiter.rule_for("/v1/verify-rules").path, "/v1/verify")
        self.assertIsNone(self.limiter.rule_for("/health"))

    def test_blocks_after_limit_until_window_resets(self):
        rule = self.limiter.rule_for("/v1/chat")
        self.assertTrue(self.limiter.hit(rule, "1.2.3.4")[0])
        self.assertTrue(self.limiter.hit(rule, "1.2.3.4")[0])
        allowed, remaining, reset_in = self.limiter.hit(rule, "1.2.3.4")
        self.assertFalse(allowed)
        self.assertEqual(remaining, 0)
        self.assertEqual(reset_in, 60)
        self.clock.now = 60.0
        self.assertTrue(self.limiter.hit(rule, "1.2.3.4")[0])

    def test_clients_counted_separately(self):
        rule = self.limiter.rule_for("/v1/chat")
        self.limiter.hit(rule, "a")
        self.limiter.hit(rule, "a")
        self.assertTrue(self.limiter.hit(rule, "b")[0])

    def test_rule_from_dict(self):
        rule = RateLimitRule.from_dict({"path": "/v1/anchor", "limit": "30", "window_seconds": 60})
        self.assertEqual(rule, RateLimitRule("/v1/anchor", 30, 60.0))


if __name__ == "__main__":
    unittest.main()
