"""Tests for the quality classifier."""

import pytest

from netpulse.core.types import DnsProbeResult, EndpointProbeResult, NetworkQuality
from netpulse.services.quality_classifier import QualityClassifier, classify_quality


def ok(name, latency=50.0):
    return EndpointProbeResult(endpoint_id=name, success=True, latency_ms=latency)


def failed(name):
    return EndpointProbeResult(endpoint_id=name, success=False)


def dns(success):
    return DnsProbeResult(host="example.com", success=success)


class TestQualityClassifier:
    def test_weighted_scenario_is_fair(self):
        """Two of four endpoints (1.8 of 3.2 weight) succeed: confidence 0.5625, fair."""
        results = [
            (ok("a"), 1.0),
            (ok("b"), 0.8),
            (failed("c"), 0.8),
            (failed("d"), 0.6),
        ]

        check = QualityClassifier().classify(results, [dns(True)])

        assert check.confidence == pytest.approx(0.5625)
        assert check.quality == NetworkQuality.FAIR
        assert check.is_online is True

    def test_endpoint_success_alone_is_online(self):
        check = QualityClassifier().classify([(ok("a"), 1.0)], [dns(False), dns(False)])

        assert check.is_online is True
        assert check.endpoint_success is True
        assert check.dns_success is False

    def test_dns_success_alone_is_online_but_poor(self):
        check = QualityClassifier().classify([(failed("a"), 1.0), (failed("b"), 0.6)], [dns(True)])

        assert check.is_online is True
        assert check.confidence == 0.0
        assert check.quality == NetworkQuality.POOR

    def test_no_signal_is_offline(self):
        check = QualityClassifier().classify([(failed("a"), 1.0)], [dns(False)])

        assert check.is_online is False
        assert check.quality == NetworkQuality.OFFLINE

    def test_no_endpoints_has_zero_confidence(self):
        check = QualityClassifier().classify([], [dns(True)])
        assert check.confidence == 0.0
        assert check.is_online is True

    def test_latency_only_counts_successes(self):
        results = [(ok("a", 40.0), 1.0), (ok("b", 60.0), 1.0), (failed("c"), 1.0)]

        check = QualityClassifier().classify(results)

        assert check.avg_latency_ms == pytest.approx(50.0)
        assert check.min_latency_ms == pytest.approx(40.0)

    def test_all_fast_successes_are_excellent(self):
        results = [(ok("a", 30.0), 1.0), (ok("b", 45.0), 0.8)]
        assert QualityClassifier().classify(results).quality == NetworkQuality.EXCELLENT


class TestClassifyQuality:
    @pytest.mark.parametrize(
        "confidence,latency,expected",
        [
            (0.9, 50.0, NetworkQuality.EXCELLENT),
            (0.9, 150.0, NetworkQuality.GOOD),
            (0.7, 250.0, NetworkQuality.GOOD),
            (0.7, 500.0, NetworkQuality.FAIR),
            (0.5, 900.0, NetworkQuality.FAIR),
            (0.5, 1500.0, NetworkQuality.POOR),
            (0.3, 10.0, NetworkQuality.POOR),
            (0.2, 10.0, NetworkQuality.POOR),
        ],
    )
    def test_thresholds(self, confidence, latency, expected):
        assert classify_quality(True, confidence, latency) == expected

    def test_offline_wins(self):
        assert classify_quality(False, 1.0, 10.0) == NetworkQuality.OFFLINE

    def test_missing_latency_is_poor(self):
        assert classify_quality(True, 0.9, None) == NetworkQuality.POOR
