"""Quality classifier - confidence score and quality tier."""
from typing import List, Optional, Sequence, Tuple

from loguru import logger

from netpulse.core.types import CheckResult, DnsProbeResult, EndpointProbeResult, NetworkQuality

# (min confidence exclusive, max avg latency exclusive, tier), best first
QUALITY_THRESHOLDS: List[Tuple[float, float, NetworkQuality]] = [
    (0.8, 100.0, NetworkQuality.EXCELLENT),
    (0.6, 300.0, NetworkQuality.GOOD),
    (0.4, 1000.0, NetworkQuality.FAIR),
]
POOR_CONFIDENCE = 0.3


def classify_quality(is_online: bool, confidence: float, avg_latency_ms: Optional[float]) -> NetworkQuality:
    """Map confidence and average latency onto a quality tier."""
    if not is_online:
        return NetworkQuality.OFFLINE
    if confidence <= POOR_CONFIDENCE or avg_latency_ms is None:
        return NetworkQuality.POOR

    for min_confidence, max_latency, tier in QUALITY_THRESHOLDS:
        if confidence > min_confidence and avg_latency_ms < max_latency:
            return tier
    return NetworkQuality.POOR


class QualityClassifier:
    """Combines weighted endpoint results and DNS results into one verdict."""

    def classify(
        self,
        endpoint_results: Sequence[Tuple[EndpointProbeResult, float]],
        dns_results: Sequence[DnsProbeResult] = (),
    ) -> CheckResult:
        """
        Classify one round of probes.

        Args:
            endpoint_results: Pairs of (result, endpoint weight)
            dns_results: DNS probe results

        Returns:
            CheckResult; online when any endpoint or any DNS lookup succeeded
        """
        total_weight = sum(weight for _, weight in endpoint_results)
        success_weight = sum(weight for result, weight in endpoint_results if result.success)
        confidence = success_weight / total_weight if total_weight > 0 else 0.0

        latencies = [
            result.latency_ms for result, _ in endpoint_results if result.success and result.latency_ms is not None
        ]
        avg_latency = sum(latencies) / len(latencies) if latencies else None
        min_latency = min(latencies) if latencies else None

        endpoint_success = any(result.success for result, _ in endpoint_results)
        dns_success = any(result.success for result in dns_results)
        # A single working signal is enough, e.g. DNS blocked by a VPN but raw IP fine
        is_online = endpoint_success or dns_success

        quality = classify_quality(is_online, confidence, avg_latency)
        logger.debug(
            f"[QualityClassifier] online={is_online} confidence={confidence:.2f} "
            f"avg_latency={avg_latency if avg_latency is None else round(avg_latency)} quality={quality}"
        )
        return CheckResult(
            is_online=is_online,
            quality=quality,
            confidence=confidence,
            avg_latency_ms=avg_latency,
            min_latency_ms=min_latency,
            dns_success=dns_success,
            endpoint_success=endpoint_success,
        )
