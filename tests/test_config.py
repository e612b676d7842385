"""Tests for concord.config."""
import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from concord.config import DEFAULT_CONFIG_PATH, Config, _deep_merge, load_config


class TestConfig(unittest.TestCase):
    def test_deep_merge(self):
        merged = _deep_merge({"a": {"b": 1, "c": 2}, "d": 1}, {"a": {"c": 3}})
        self.assertEqual(merged, {"a": {"b": 1, "c": 3}, "d": 1})

    def test_defaults_file_loads(self):
        with patch.dict(os.environ, {}, clear=True):
            config = Config(load_config(DEFAULT_CONFIG_PATH, Path("/nonexistent/concord.yaml")))
        self.assertEqual(config.breaker_threshold, 3)
        self.assertEqual(config.consensus_threshold, 0.6)
        self.assertEqual(config.providers["openai"]["roster"], ["gpt-5-mini", "gpt-4o-mini", "gpt-4o"])
        self.assertEqual(config.max_messages, 30)
        self.assertEqual(config.max_content_chars, 6000)

    def test_user_override_and_env(self):
        with tempfile.TemporaryDirectory() as tmp:
            user = Path(tmp) / "config.yaml"
            user.write_text("breaker:\n  threshold: 5\nserver:\n  port: 9000\n")
            env = {
                "CONCORD_PORT": "9100",
                "CONCORD_BREAKER_COOLDOWN": "5.5",
                "CONCORD_ALLOWED_ORIGINS": "https://a.example, https://b.example",
            }
            with patch.dict(os.environ, env, clear=True):
                config = Config(load_config(DEFAULT_CONFIG_PATH, user))
        self.assertEqual(config.breaker_threshold, 5)
        self.assertEqual(config.breaker_cooldown_seconds, 5.5)
        self.assertEqual(config.server["port"], 9100)
        self.assertEqual(config.cors_origins, ["https://a.example", "https://b.example"])

    def test_empty_config_defaults(self):
        config = Config({})
        self.assertEqual(config.default_temperature, 0.2)
        self.assertEqual(config.request_timeout_seconds, 30.0)
        self.assertEqual(len(config.rate_limits), 4)
        self.assertIsNone(config.audit_path)
        self.assertTrue(config.system_prompt)


if __name__ == "__main__":
    unittest.main()
