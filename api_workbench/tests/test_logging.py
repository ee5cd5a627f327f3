"""
Tests for logging configuration and configuration loading.
"""

import logging

from loguru import logger

from api_workbench.config import Settings
from api_workbench.log import configure_logging, get_logger, reset_logging


class TestLogging:

    def teardown_method(self):
        reset_logging()

    def test_file_sink_receives_bound_records(self, tmp_path):
        configure_logging(level="DEBUG", log_dir=tmp_path)

        get_logger("pipeline").info("sent {}", "GET")
        logger.complete()

        files = list(tmp_path.glob("api_workbench_*.log"))
        assert len(files) == 1
        content = files[0].read_text(encoding="utf-8")
        assert "sent GET" in content
        assert "| pipeline |" in content

    def test_stdlib_records_are_forwarded(self, tmp_path):
        configure_logging(level="INFO", log_dir=tmp_path)

        logging.getLogger("httpx").warning("from the standard library")
        logger.complete()

        content = next(tmp_path.glob("api_workbench_*.log")).read_text(encoding="utf-8")
        assert "from the standard library" in content

    def test_level_filters_records(self, tmp_path):
        configure_logging(level="WARNING", log_dir=tmp_path)

        get_logger("scripts").info("too quiet")
        get_logger("scripts").warning("loud enough")
        logger.complete()

        content = next(tmp_path.glob("api_workbench_*.log")).read_text(encoding="utf-8")
        assert "too quiet" not in content
        assert "loud enough" in content

    def test_reconfigure_replaces_sinks(self, tmp_path):
        first, second = tmp_path / "first", tmp_path / "second"
        configure_logging(log_dir=first)
        configure_logging(log_dir=second)

        get_logger("app").info("only once")
        logger.complete()

        assert "only once" not in next(first.glob("*.log")).read_text(encoding="utf-8")
        assert "only once" in next(second.glob("*.log")).read_text(encoding="utf-8")

    def test_no_log_directory_means_no_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        configure_logging(level="DEBUG")

        get_logger("app").info("console only")
        logger.complete()

        assert list(tmp_path.iterdir()) == []

    def test_unnamed_logger_uses_placeholder(self, tmp_path):
        configure_logging(log_dir=tmp_path)

        get_logger().info("anonymous")
        logger.complete()

        assert "| - |" in next(tmp_path.glob("*.log")).read_text(encoding="utf-8")


class TestSettings:

    def test_defaults(self, monkeypatch):
        for name in ("DATABASE_URL", "SCRIPT_TIMEOUT", "LOG_LEVEL"):
            monkeypatch.delenv(f"API_WORKBENCH_{name}", raising=False)

        settings = Settings.from_env()

        assert settings.script_timeout == 5.0
        assert settings.request_timeout == 30.0
        assert settings.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("API_WORKBENCH_SCRIPT_TIMEOUT", "1.5")
        monkeypatch.setenv("API_WORKBENCH_LOG_TO_FILE", "true")

        settings = Settings.from_env()

        assert settings.script_timeout == 1.5
        assert settings.log_to_file is True
