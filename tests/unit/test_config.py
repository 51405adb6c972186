"""Unit tests for settings and logging configuration."""

import logging

import pytest
import structlog
from pydantic import ValidationError

from xmrspc.core.config import Settings
from xmrspc.core.logging import bind_series_context, configure_logging


class TestSettings:
    """Test Settings."""

    def test_defaults(self):
        settings = Settings()

        assert settings.use_median is False
        assert settings.outlier_min_points == 6
        assert settings.log_format == "console"

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("XMRSPC_USE_MEDIAN", "true")
        monkeypatch.setenv("XMRSPC_LOG_LEVEL", "debug")

        settings = Settings()

        assert settings.use_median is True
        assert settings.log_level == "DEBUG"

    def test_cors_origin_list(self):
        settings = Settings(cors_origins="http://a.test, ,http://b.test")
        assert settings.cors_origin_list == ["http://a.test", "http://b.test"]

    def test_invalid_log_format(self):
        with pytest.raises(ValidationError):
            Settings(log_format="xml")

    def test_outlier_config(self):
        settings = Settings(outlier_min_points=8, outlier_max_fraction=0.1)

        assert settings.outlier_config().min_data_points == 8
        assert settings.outlier_config(12).min_data_points == 12
        assert settings.outlier_config().max_outlier_fraction == 0.1


class TestLogging:
    """Test configure_logging and the request log context."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)
        structlog.contextvars.clear_contextvars()

    def test_root_handler_installed(self):
        configure_logging("json", "debug")
        root = logging.getLogger()

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)

    def test_unknown_level_falls_back_to_info(self):
        configure_logging("console", "chatty")
        assert logging.getLogger().level == logging.INFO

    def test_series_context_replaced_per_call(self):
        bind_series_context("Revenue", 12)
        bind_series_context("", 3)

        assert structlog.contextvars.get_contextvars() == {"submetric": None, "points": 3}
