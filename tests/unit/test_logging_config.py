"""
Unit tests for tiered logging configuration
"""

import logging

import pytest

from jarvis.config.logging_config import TRACE, get_log_level, get_logger


@pytest.mark.unit
class TestLogLevels:

    def test_default_level(self, monkeypatch):
        monkeypatch.delenv("LOG_LEVEL", raising=False)
        monkeypatch.delenv("LOG_LEVEL_MUSIC", raising=False)

        assert get_log_level("jarvis.services.playback_queue") == logging.INFO

    def test_global_level(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.delenv("LOG_LEVEL_SPEECH", raising=False)

        assert get_log_level("jarvis.services.speech_relay") == logging.DEBUG

    def test_module_override_wins(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        monkeypatch.setenv("LOG_LEVEL_SPEECH", "TRACE")

        assert get_log_level("jarvis.services.conversation_client") == TRACE
        assert get_log_level("jarvis.services.playback_queue") == logging.ERROR

    def test_unknown_level_falls_back_to_info(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "LOUD")

        assert get_log_level("jarvis.voice.connection") == logging.INFO

    def test_logger_has_trace(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL_VOICE", "TRACE")

        logger = get_logger("jarvis.voice.resampler")

        assert logger.level == TRACE
        assert callable(logger.trace)
