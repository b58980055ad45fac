"""Tests for Settings.

Verifies that Settings:
- Loads the documented defaults
- Reads overrides from CORVID_RETRY_ prefixed env vars
- Rejects out-of-range values
- Drives logging configuration
"""

import logging

import pytest
from pydantic import ValidationError

from corvid_retry.core.config import Settings, configure_logging, get_settings


class TestSettingsDefaults:
    def test_retry_defaults(self):
        settings = Settings()
        assert settings.RETRY_MAX_ATTEMPTS == 3
        assert settings.RETRY_BASE_DELAY == 1.0
        assert settings.RETRY_MAX_DELAY == 30.0
        assert settings.RETRY_FACTOR == 2.0
        assert settings.RETRY_JITTER is True

    def test_circuit_breaker_defaults(self):
        settings = Settings()
        assert settings.CIRCUIT_BREAKER_THRESHOLD == 5
        assert settings.CIRCUIT_BREAKER_RESET_SECONDS == 60.0
        assert settings.CIRCUIT_BREAKER_HALF_OPEN_SUCCESSES == 1

    def test_log_level_default(self):
        assert Settings().LOG_LEVEL == "WARNING"


class TestSettingsEnvOverrides:
    def test_int_override(self, monkeypatch):
        monkeypatch.setenv("CORVID_RETRY_RETRY_MAX_ATTEMPTS", "8")
        assert Settings().RETRY_MAX_ATTEMPTS == 8

    def test_float_override(self, monkeypatch):
        monkeypatch.setenv("CORVID_RETRY_CIRCUIT_BREAKER_RESET_SECONDS", "2.5")
        assert Settings().CIRCUIT_BREAKER_RESET_SECONDS == 2.5

    def test_bool_override(self, monkeypatch):
        monkeypatch.setenv("CORVID_RETRY_RETRY_JITTER", "false")
        assert Settings().RETRY_JITTER is False

    def test_unprefixed_env_ignored(self, monkeypatch):
        monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "99")
        assert Settings().RETRY_MAX_ATTEMPTS == 3


class TestSettingsValidation:
    @pytest.mark.parametrize(
        "field,value",
        [
            ("RETRY_MAX_ATTEMPTS", 0),
            ("RETRY_BASE_DELAY", -1.0),
            ("CIRCUIT_BREAKER_THRESHOLD", 0),
            ("CIRCUIT_BREAKER_HALF_OPEN_SUCCESSES", 0),
        ],
    )
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})


class TestGetSettings:
    def test_cached_instance(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


class TestConfigureLogging:
    def test_sets_package_logger_level(self):
        package_logger = logging.getLogger("corvid_retry")
        previous = package_logger.level
        try:
            assert configure_logging("debug") is package_logger
            assert package_logger.level == logging.DEBUG
            configure_logging(logging.ERROR)
            assert package_logger.level == logging.ERROR
        finally:
            package_logger.setLevel(previous)

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging("chatty")
