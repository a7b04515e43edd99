"""Tests for the observability module.

Tests for metrics collection, the timing helpers and logging configuration.
"""
import json
import logging
import time
from logging.handlers import RotatingFileHandler
from unittest.mock import patch

import pytest

from notegraph.observability import (
    MetricsCollector,
    configure_logging,
    timed_operation,
    traced,
)


@pytest.fixture
def collector(tmp_path):
    """A MetricsCollector writing to a temp file."""
    return MetricsCollector(metrics_file=tmp_path / "metrics.json")


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_record_successful_operation(self, collector):
        """Test recording a successful operation."""
        collector.record_operation("save_note", 100.0, True)

        metrics = collector.get_metrics()
        assert metrics["save_note"]["count"] == 1
        assert metrics["save_note"]["success_count"] == 1
        assert metrics["save_note"]["error_count"] == 0
        assert metrics["save_note"]["avg_duration_ms"] == 100.0

    def test_record_failed_operation(self, collector):
        """Test recording a failed operation."""
        collector.record_operation("save_note", 50.0, False, "Test error")

        metrics = collector.get_metrics()
        assert metrics["save_note"]["error_count"] == 1
        assert metrics["save_note"]["last_error"] == "Test error"

    def test_multiple_operations_aggregated(self, collector):
        """Test that repeated operations are aggregated."""
        collector.record_operation("op", 100.0, True)
        collector.record_operation("op", 200.0, True)
        collector.record_operation("op", 300.0, False, "Error")

        metrics = collector.get_metrics()
        assert metrics["op"]["count"] == 3
        assert metrics["op"]["success_count"] == 2
        assert metrics["op"]["avg_duration_ms"] == 200.0
        assert metrics["op"]["max_duration_ms"] == 300.0

    def test_get_summary(self, collector):
        """Test the metrics summary."""
        collector.record_operation("op1", 100.0, True)
        collector.record_operation("op2", 200.0, False, "Error")

        summary = collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["total_errors"] == 1
        assert summary["operations_tracked"] == ["op1", "op2"]

    def test_reset(self, collector):
        """Test resetting all metrics."""
        collector.record_operation("op", 100.0, True)
        collector.reset()
        assert collector.get_metrics() == {}

    def test_save_metrics(self, collector, tmp_path):
        """Test saving metrics to a JSON file."""
        collector.record_operation("op1", 100.0, True)

        assert collector.save_metrics() is True

        data = json.loads((tmp_path / "metrics.json").read_text())
        assert data["operations"]["op1"]["count"] == 1
        assert data["summary"]["total_operations"] == 1

    def test_save_metrics_io_failure(self, tmp_path):
        """Test that a write failure is reported instead of raised."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("x")
        collector = MetricsCollector(metrics_file=blocker / "metrics.json")
        assert collector.save_metrics() is False


class TestTimedOperation:
    """Tests for timed_operation and traced."""

    def test_records_success(self, collector):
        """Test that a timed block records its duration."""
        with patch("notegraph.observability.metrics", collector):
            with timed_operation("get_backlinks", note_id="n1") as op:
                time.sleep(0.01)
                op["groups"] = 2

        metrics = collector.get_metrics()
        assert metrics["get_backlinks"]["success_count"] == 1
        assert metrics["get_backlinks"]["avg_duration_ms"] >= 10

    def test_records_failure_and_reraises(self, collector):
        """Test that a failing timed block records the error and re-raises."""
        with patch("notegraph.observability.metrics", collector):
            with pytest.raises(ValueError):
                with timed_operation("save_note"):
                    raise ValueError("Test error")

        assert collector.get_metrics()["save_note"]["last_error"] == "Test error"

    def test_traced_decorator(self, collector):
        """Test that the traced decorator records calls."""
        @traced("list_things")
        def list_things(note_id=None):
            return [1, 2, 3]

        with patch("notegraph.observability.metrics", collector):
            assert list_things(note_id="n1") == [1, 2, 3]

        assert collector.get_metrics()["list_things"]["count"] == 1

    def test_traced_defaults_to_function_name(self, collector):
        """Test that traced uses the function name by default."""
        @traced()
        def compute():
            return 42

        with patch("notegraph.observability.metrics", collector):
            compute()

        assert "compute" in collector.get_metrics()


class TestConfigureLogging:
    """Tests for configure_logging function."""

    @pytest.fixture(autouse=True)
    def restore_handlers(self):
        package_logger = logging.getLogger("notegraph")
        saved_handlers = list(package_logger.handlers)
        saved_level = package_logger.level
        yield
        for handler in package_logger.handlers:
            if handler not in saved_handlers:
                handler.close()
        package_logger.handlers = saved_handlers
        package_logger.setLevel(saved_level)

    def test_creates_directory_and_file_handler(self, tmp_path):
        """Test that logging creates the log directory and a rotating file handler."""
        log_dir = tmp_path / "logs"

        result = configure_logging(log_dir=log_dir, console=False)

        assert result == log_dir
        assert log_dir.is_dir()
        handlers = logging.getLogger("notegraph").handlers
        assert any(isinstance(h, RotatingFileHandler) for h in handlers)

    def test_sets_level(self, tmp_path):
        """Test that the requested log level is applied."""
        configure_logging(log_dir=tmp_path / "logs", level=logging.DEBUG, console=False)
        assert logging.getLogger("notegraph").level == logging.DEBUG

    def test_does_not_duplicate_handlers(self, tmp_path):
        """Test that configuring twice does not add handlers twice."""
        configure_logging(log_dir=tmp_path / "logs", console=True)
        configure_logging(log_dir=tmp_path / "logs", console=True)
        handlers = logging.getLogger("notegraph").handlers
        assert sum(isinstance(h, RotatingFileHandler) for h in handlers) == 1
