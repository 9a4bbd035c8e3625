"""Tests for logging helpers, metrics and health checks"""

import json
import logging
import pytest

from rightsizer.core.logging import (
    AuditLogger,
    PerformanceLogger,
    SecurityFilter,
    StructuredFormatter,
    setup_logging,
)
from rightsizer.core.monitoring import HealthChecker, MetricsCollector


def _record(message, **extra):
    record = logging.LogRecord("rightsizer.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogging:
    """Test formatters and filters"""

    def test_structured_formatter_promotes_context(self):
        record = _record("Analyzed pod", cycle_id="cycle_1", namespace="default", unrelated="x")

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "Analyzed pod"
        assert data["level"] == "INFO"
        assert data["cycle_id"] == "cycle_1"
        assert data["namespace"] == "default"
        assert "unrelated" not in data

    @pytest.mark.parametrize("message,expected", [
        ("connecting to postgresql://rs:hunter2@db:5432/rs",
         "connecting to postgresql://rs:***@db:5432/rs"),
        ("token=abc123 accepted", "token=***REDACTED*** accepted"),
        ("nothing to hide", "nothing to hide"),
    ])
    def test_security_filter_redacts(self, message, expected):
        record = _record(message)

        assert SecurityFilter().filter(record) is True
        assert record.getMessage() == expected

    def test_performance_timer_records_duration(self):
        performance = PerformanceLogger()

        with performance.timer("cycle.analyze", phase="analyze"):
            pass

        assert performance.last_durations["cycle.analyze"] >= 0

    def test_audit_file(self, tmp_path):
        path = tmp_path / "audit.log"
        audit = AuditLogger(path)

        audit.log_event("recommendation", "apply", resource="recommendation:3")
        for handler in audit.logger.handlers:
            handler.flush()

        entry = json.loads(path.read_text().splitlines()[-1])
        assert entry["message"] == "Audit: recommendation - apply recommendation:3"

        for handler in list(audit.logger.handlers):
            audit.logger.removeHandler(handler)
            handler.close()

    def test_setup_logging_writes_file(self, tmp_path):
        log_file = tmp_path / "logs" / "rightsizer.log"

        setup_logging(level="DEBUG", log_file=log_file, console=False)
        logging.getLogger("rightsizer.test").info("using sqlite:///x password=swordfish")
        for handler in logging.getLogger().handlers:
            handler.flush()

        text = log_file.read_text()
        assert "password=***REDACTED***" in text
        assert "swordfish" not in text

        root = logging.getLogger()
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        root.setLevel(logging.WARNING)


class TestMetricsCollector:
    """Test metric recording and export"""

    def test_counters_and_gauges(self):
        metrics = MetricsCollector()

        metrics.increment_counter("entity.success", 2, tags={"phase": "reconcile"})
        metrics.increment_counter("entity.success", tags={"phase": "reconcile"})
        metrics.set_gauge("cycle.units_enumerated", 5)

        assert metrics.get_counter("entity.success", tags={"phase": "reconcile"}) == 3
        assert metrics.get_counter("entity.success") == 0
        assert metrics.get_gauge("cycle.units_enumerated") == 5

    def test_histogram_is_bounded(self):
        metrics = MetricsCollector(max_histogram_values=10)
        for value in range(25):
            metrics.record_histogram("cycle.duration", value)

        stats = metrics.get_histogram_stats("cycle.duration")

        assert stats["count"] == 10
        assert stats["min"] == 15
        assert stats["max"] == 24

    def test_prometheus_export(self):
        metrics = MetricsCollector()
        metrics.increment_counter("cycle.count")
        metrics.increment_counter("entity.failed", tags={"phase": "analyze"})
        metrics.set_gauge("cycle.units_enumerated", 4)
        metrics.record_histogram("api.request.duration", 0.5)

        text = metrics.export_prometheus()

        assert "rightsizer_cycle_count_total 1" in text
        assert 'rightsizer_entity_failed_total{phase="analyze"} 1' in text
        assert "rightsizer_cycle_units_enumerated 4" in text
        assert "rightsizer_api_request_duration_count 1" in text
        assert text.endswith("\n")

    def test_reset(self):
        metrics = MetricsCollector()
        metrics.increment_counter("cycle.count")

        metrics.reset()

        assert metrics.export_prometheus() == ""


class TestHealthChecker:
    """Test health check aggregation"""

    def test_all_healthy(self):
        checker = HealthChecker()
        checker.register_check("database", lambda: True)

        status = checker.check_health()

        assert status.healthy
        assert status.checks == {"database": True}
        assert status.details["passed"] == 1

    def test_failing_and_raising_checks(self):
        def broken():
            raise RuntimeError("boom")

        checker = HealthChecker()
        checker.register_check("database", lambda: True)
        checker.register_check("source", broken)

        status = checker.check_health()

        assert not status.healthy
        assert status.checks == {"database": True, "source": False}
        assert status.details["failed"] == 1
        assert checker.get_last_results() == status.checks
