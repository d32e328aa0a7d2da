import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from relaybot.config.loader import get_config
from relaybot.config.validator import ConfigValidationError, validate_config


VALID = {
    "bot_token": "token",
    "owner_id": "1",
    "provider": {"base_url": "https://example/v1/", "grounding_extra_body": {"tools": []}},
    "model": "gemini-2.5-pro",
}


class TestValidateConfig(unittest.TestCase):
    def test_valid_config(self):
        with self.assertNoLogs("relaybot.config.validator", level="ERROR"):
            validate_config(dict(VALID))

    def test_missing_token_and_provider(self):
        with self.assertLogs("relaybot.config.validator", level="ERROR"):
            with self.assertRaises(ConfigValidationError):
                validate_config({"model": "m"})

    def test_bad_types(self):
        for key, value in (("model", 3), ("response_timeout_seconds", 0), ("state_file", ["x"])):
            cfg = dict(VALID, **{key: value})
            with self.assertLogs("relaybot.config.validator", level="ERROR"):
                with self.assertRaises(ConfigValidationError):
                    validate_config(cfg)

    def test_provider_sections_must_be_mappings(self):
        cfg = dict(VALID, provider={"base_url": "x", "extra_body": "nope"})
        with self.assertLogs("relaybot.config.validator", level="ERROR"):
            with self.assertRaises(ConfigValidationError):
                validate_config(cfg)


class TestGetConfig(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "config.yaml"

    def tearDown(self):
        self._tmp.cleanup()

    def test_env_overrides_token(self):
        self.path.write_text("provider:\n  base_url: https://example/\n", encoding="utf-8")
        with mock.patch.dict(os.environ, {"DISCORD_TOKEN": "from-env", "DISCORD_OWNER_ID": "42"}):
            cfg = get_config(str(self.path))
        self.assertEqual(cfg["bot_token"], "from-env")
        self.assertEqual(cfg["owner_id"], "42")

    def test_missing_file_exits(self):
        with self.assertRaises(SystemExit) as ctx:
            get_config(str(self.path))
        self.assertEqual(ctx.exception.code, 1)

    def test_invalid_config_exits(self):
        self.path.write_text("model: 3\n", encoding="utf-8")
        with mock.patch.dict(os.environ, {"DISCORD_TOKEN": ""}):
            with self.assertRaises(SystemExit):
                get_config(str(self.path))


if __name__ == "__main__":
    unittest.main()
