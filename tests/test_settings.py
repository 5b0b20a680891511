import os
import unittest
from unittest.mock import patch

from pydantic import ValidationError

from pricefeed.config.settings import DEFAULT_SYMBOLS, Settings


class TestPriceFeedSettings(unittest.TestCase):
    def test_defaults_without_env(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.PRICEFEED_SYMBOLS, DEFAULT_SYMBOLS)
        self.assertEqual(settings.PRICEFEED_REST_URL, "https://api.binance.com")
        self.assertEqual(settings.PRICEFEED_WS_URL, "wss://stream.binance.com:9443")
        self.assertEqual(settings.PRICEFEED_BACKOFF_BASE_SEC, 1.0)
        self.assertEqual(settings.PRICEFEED_BACKOFF_CAP_SEC, 30.0)
        self.assertEqual(settings.PRICEFEED_STALE_AFTER_SEC, 15)

    def test_symbols_parse_comma_separated_values(self):
        with patch.dict(os.environ, {"PRICEFEED_SYMBOLS": " btcusdt, ETHUSDT ,, "}, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.PRICEFEED_SYMBOLS, ["BTCUSDT", "ETHUSDT"])

    def test_blank_symbols_fall_back_to_defaults(self):
        with patch.dict(os.environ, {"PRICEFEED_SYMBOLS": " , "}, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.PRICEFEED_SYMBOLS, DEFAULT_SYMBOLS)

    def test_numeric_env_values_are_coerced(self):
        env = {
            "PRICEFEED_HTTP_TIMEOUT_SEC": "2.5",
            "PRICEFEED_BACKOFF_BASE_SEC": "0.5",
            "PRICEFEED_BACKOFF_CAP_SEC": "8",
            "PRICEFEED_STALE_AFTER_SEC": "30",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        self.assertEqual(settings.PRICEFEED_HTTP_TIMEOUT_SEC, 2.5)
        self.assertEqual(settings.PRICEFEED_BACKOFF_BASE_SEC, 0.5)
        self.assertEqual(settings.PRICEFEED_BACKOFF_CAP_SEC, 8.0)
        self.assertEqual(settings.PRICEFEED_STALE_AFTER_SEC, 30)

    def test_invalid_values_fail_validation(self):
        for env in (
            {"PRICEFEED_STALE_AFTER_SEC": "0"},
            {"PRICEFEED_CONNECT_TIMEOUT_SEC": "soon"},
            {"PRICEFEED_BACKOFF_BASE_SEC": "10", "PRICEFEED_BACKOFF_CAP_SEC": "5"},
        ):
            with self.subTest(env=env):
                with patch.dict(os.environ, env, clear=True):
                    with self.assertRaises(ValidationError):
                        Settings.from_env()


if __name__ == "__main__":
    unittest.main()
