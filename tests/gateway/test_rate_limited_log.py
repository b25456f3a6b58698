"""
Tests for the shared rate-limited logging implementation.
"""
from unittest.mock import MagicMock, patch

from fair_sdk.gateway import _rate_limited_log
from fair_sdk.gateway._rate_limited_log import rate_limited_log, reset_rate_limit_cache


class TestRateLimitedLog:
    """Tests for the rate-limited logging implementation."""

    def test_suppresses_repeats(self):
        mock_logger = MagicMock()
        assert rate_limited_log("Oracle down", logger_instance=mock_logger) is True
        assert rate_limited_log("Oracle down", logger_instance=mock_logger) is False
        mock_logger.warning.assert_called_once_with("Oracle down")

    def test_levels_are_keyed_separately(self):
        mock_logger = MagicMock()
        rate_limited_log("Retrying", level="warning", logger_instance=mock_logger)
        rate_limited_log("Retrying", level="error", logger_instance=mock_logger)
        mock_logger.warning.assert_called_once_with("Retrying")
        mock_logger.error.assert_called_once_with("Retrying")

    def test_reset(self):
        mock_logger = MagicMock()
        rate_limited_log("Again", logger_instance=mock_logger)
        reset_rate_limit_cache()
        rate_limited_log("Again", logger_instance=mock_logger)
        assert mock_logger.warning.call_count == 2

    def test_expired_entries_log_again(self):
        mock_logger = MagicMock()
        with patch.object(_rate_limited_log, "_log_cache", {}) as cache:
            rate_limited_log("Expiring", logger_instance=mock_logger)
            cache.clear()
            rate_limited_log("Expiring", logger_instance=mock_logger)
        assert mock_logger.warning.call_count == 2

    def test_default_logger(self):
        with patch.object(_rate_limited_log, "logger") as module_logger:
            rate_limited_log("Module default", level="info")
            module_logger.info.assert_called_once_with("Module default")
