"""Tests for the observability module.

Tests for metrics collection, phase timing, and logging configuration.
"""
import logging
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import pytest

from rhizonote_sync.observability import (
    ROOT_LOGGER_NAME,
    MetricsCollector,
    configure_logging,
    timed_operation,
)


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    @pytest.fixture
    def metrics_collector(self):
        return MetricsCollector()

    def test_record_successful_operation(self, metrics_collector):
        """Test recording a successful operation."""
        metrics_collector.record_operation("sync.scan", 100.0, True)

        metrics = metrics_collector.get_metrics()
        assert metrics["sync.scan"]["count"] == 1
        assert metrics["sync.scan"]["success_count"] == 1
        assert metrics["sync.scan"]["error_count"] == 0
        assert metrics["sync.scan"]["avg_duration_ms"] == 100.0

    def test_record_failed_operation(self, metrics_collector):
        """Test recording a failed operation with error."""
        metrics_collector.record_operation("sync.run", 50.0, False, "listing failed")

        metrics = metrics_collector.get_metrics()
        assert metrics["sync.run"]["error_count"] == 1
        assert metrics["sync.run"]["last_error"] == "listing failed"
        assert metrics["sync.run"]["last_error_time"] is not None

    def test_multiple_operations_aggregated(self, metrics_collector):
        """Test that multiple operations are aggregated correctly."""
        metrics_collector.record_operation("sync.upload", 100.0, True)
        metrics_collector.record_operation("sync.upload", 200.0, True)
        metrics_collector.record_operation("sync.upload", 300.0, False, "Error")

        metrics = metrics_collector.get_metrics()
        assert metrics["sync.upload"]["count"] == 3
        assert metrics["sync.upload"]["success_count"] == 2
        assert metrics["sync.upload"]["avg_duration_ms"] == 200.0
        assert metrics["sync.upload"]["max_duration_ms"] == 300.0

    def test_reset_metrics(self, metrics_collector):
        metrics_collector.record_operation("sync.scan", 100.0, True)
        metrics_collector.reset()
        assert metrics_collector.get_metrics() == {}


class TestTimedOperation:
    """Tests for timed_operation context manager."""

    def test_records_success(self):
        collector = MetricsCollector()
        with patch("rhizonote_sync.observability.metrics", collector):
            with timed_operation("sync.download", files=3) as op:
                op["downloaded"] = 3

        metrics = collector.get_metrics()
        assert metrics["sync.download"]["success_count"] == 1
        assert "correlation_id" in op

    def test_records_failure_and_reraises(self):
        collector = MetricsCollector()
        with patch("rhizonote_sync.observability.metrics", collector):
            with pytest.raises(ValueError):
                with timed_operation("sync.run"):
                    raise ValueError("Test error")

        metrics = collector.get_metrics()
        assert metrics["sync.run"]["error_count"] == 1
        assert "Test error" in metrics["sync.run"]["last_error"]

    @pytest.mark.anyio
    async def test_wraps_awaits(self):
        collector = MetricsCollector()

        async def phase():
            return 2

        with patch("rhizonote_sync.observability.metrics", collector):
            with timed_operation("sync.upload") as op:
                op["uploaded"] = await phase()

        assert collector.get_metrics()["sync.upload"]["count"] == 1


class TestConfigureLogging:
    """Tests for configure_logging function."""

    @pytest.fixture(autouse=True)
    def _restore_handlers(self):
        root = logging.getLogger(ROOT_LOGGER_NAME)
        handlers, level = list(root.handlers), root.level
        yield
        for handler in root.handlers:
            if handler not in handlers:
                handler.close()
        root.handlers = handlers
        root.setLevel(level)

    def test_creates_directory_and_returns_it(self, tmp_path):
        log_dir = tmp_path / "logs"
        assert configure_logging(log_dir=log_dir, console=False) == log_dir
        assert log_dir.is_dir()

    def test_rotating_file_handler(self, tmp_path):
        configure_logging(log_dir=tmp_path, max_bytes=1024, backup_count=2, console=False)

        handlers = [
            h for h in logging.getLogger(ROOT_LOGGER_NAME).handlers
            if isinstance(h, RotatingFileHandler)
        ]
        assert handlers[-1].maxBytes == 1024
        assert handlers[-1].backupCount == 2
        assert (tmp_path / "sync.log").exists()

    def test_sets_level(self, tmp_path):
        configure_logging(log_dir=tmp_path, level=logging.DEBUG, console=False)
        assert logging.getLogger(ROOT_LOGGER_NAME).level == logging.DEBUG

    def test_child_loggers_reach_the_file(self, tmp_path):
        configure_logging(log_dir=tmp_path, console=False)
        logging.getLogger("rhizonote_sync.sync.executor").info("hello from executor")
        for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
            handler.flush()
        assert "hello from executor" in (tmp_path / "sync.log").read_text()
