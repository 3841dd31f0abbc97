"""
Unit tests for memory monitoring
"""

import pytest

from ingestion.monitor import (
    CRITICAL,
    GOOD,
    OK,
    WARNING,
    ResourceMonitor,
    classify,
    read_process_memory,
    suggest_remediations,
)

MB = 1024 * 1024


def fixed(current, peak=None):
    return lambda: (current, peak if peak is not None else current)


class TestClassify:
    @pytest.mark.parametrize("percent,level", [
        (0, GOOD),
        (49.9, GOOD),
        (50, OK),
        (69.9, OK),
        (70, WARNING),
        (84.9, WARNING),
        (85, CRITICAL),
        (120, CRITICAL),
    ])
    def test_thresholds(self, percent, level):
        assert classify(percent) == level

    def test_remediations(self):
        assert suggest_remediations(CRITICAL)
        assert suggest_remediations(OK) == []
        assert suggest_remediations("unknown") == []


class TestResourceMonitor:
    """Test sampling against the ceiling"""

    def test_sample_percent_and_available(self):
        monitor = ResourceMonitor(limit=100 * MB, usage_reader=fixed(60 * MB))
        sample = monitor.sample()

        assert sample.percent == 60.0
        assert sample.level == OK
        assert sample.available == 40 * MB
        assert not sample.critical

    def test_unlimited_is_always_good(self):
        monitor = ResourceMonitor(limit=0, usage_reader=fixed(10 * 1024 * MB))
        sample = monitor.sample()

        assert sample.level == GOOD
        assert sample.available is None
        assert not monitor.is_critical()

    def test_critical(self):
        monitor = ResourceMonitor(limit=100 * MB, usage_reader=fixed(90 * MB))
        assert monitor.is_critical()

    def test_critical_warnings_are_throttled(self, caplog):
        monitor = ResourceMonitor(limit=100, usage_reader=fixed(99), max_warnings=3)

        with caplog.at_level("WARNING", logger="ingestion.monitor"):
            for _ in range(10):
                assert monitor.sample().critical

        assert monitor.warnings_emitted == 3
        assert len([r for r in caplog.records if "Critical memory usage" in r.getMessage()]) == 3

    def test_reset_restores_warning_budget(self):
        monitor = ResourceMonitor(limit=100, usage_reader=fixed(99), max_warnings=1)
        monitor.sample()
        monitor.sample()
        assert monitor.warnings_emitted == 1

        monitor.reset()
        assert monitor.warnings_emitted == 0
        assert monitor.peak == 0

    def test_peak_tracks_maximum(self):
        readings = iter([(10, 10), (50, 50), (20, 50)])
        monitor = ResourceMonitor(limit=1000, usage_reader=lambda: next(readings))
        monitor.sample()
        monitor.sample()
        sample = monitor.sample()

        assert sample.current == 20
        assert monitor.peak == 50

    def test_sample_to_dict(self):
        monitor = ResourceMonitor(limit=100, usage_reader=fixed(40))
        data = monitor.sample().to_dict()

        assert data["current"] == 40
        assert data["available"] == 60
        assert data["level"] == GOOD


def test_read_process_memory_reports_usage():
    current, peak = read_process_memory()
    assert current >= 0
    assert peak >= current
