"""Shared fixtures for netpulse tests."""

import pytest

from netpulse.core.config import EndpointConfig, EngineConfig
from netpulse.core.exceptions import NetPulseError
from netpulse.core.types import AddressInfo, EndpointProbeResult, ProbeErrorCode
from netpulse.services.dns_resolver import DnsResolverMultiplexer, DnsStrategy
from netpulse.services.endpoint_prober import EndpointProber
from netpulse.services.state_broadcaster import StateBroadcaster
from netpulse.services.state_reconciler import StateReconciler

ETH0 = [AddressInfo("192.168.1.20", "IPv4", "255.255.255.0")]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventCollector:
    """Subscriber that records every event it receives."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def versions(self):
        return [e.version for e in self.events]


class FakeProber(EndpointProber):
    """Prober whose outcome is flipped by setting ``online``."""

    def __init__(self):
        super().__init__(grace=0.5)
        self.online = True
        self.latency_ms = 20.0
        self.probed = []

    def probe(self, endpoint):
        self.probed.append(endpoint.name)
        if self.online:
            return EndpointProbeResult(endpoint.endpoint_id, True, latency_ms=self.latency_ms)
        return EndpointProbeResult(endpoint.endpoint_id, False, error_code=ProbeErrorCode.TIMEOUT, error="timeout")


class SwitchableDnsStrategy(DnsStrategy):
    name = "fake"

    def __init__(self):
        self.addresses = ["93.184.216.34"]

    def resolve(self, host, timeout):
        if not self.addresses:
            raise NetPulseError(f"NXDOMAIN {host}")
        return list(self.addresses)


class FakeInterfaceProvider:
    def __init__(self):
        self.current = {"lo": [AddressInfo("127.0.0.1", "IPv4", internal=True)], "eth0": ETH0}

    def snapshot(self):
        return dict(self.current)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def broadcaster():
    return StateBroadcaster()


@pytest.fixture
def collector(broadcaster):
    events = EventCollector()
    broadcaster.subscribe(events)
    return events


@pytest.fixture
def make_reconciler(broadcaster, clock):
    """Factory for reconcilers with short test-friendly delays."""

    def _make(**overrides) -> StateReconciler:
        settings = {
            "init_grace_period": 10,
            "hysteresis_delay": 2,
            "required_consecutive_checks": 1,
            "debounce_delay": 0.01,
            "flip_flop_window": 60,
        }
        settings.update(overrides)
        return StateReconciler(broadcaster, config=EngineConfig(**settings), clock=clock)

    return _make


@pytest.fixture
def engine_config():
    return EngineConfig(
        init_grace_period=10,
        hysteresis_delay=2,
        required_consecutive_checks=1,
        debounce_delay=0.01,
        flip_flop_window=60,
        quick_check_skip_window=2,
        network_change_debounce=60,
        stability_threshold=300,
        stable_multiplier=2,
        vpn_startup_grace=0,
        force_check_timeout=5,
        probe_workers=4,
        platform_events=False,
        dns_test_hosts=["example.com"],
        endpoints=[
            EndpointConfig(name="primary", url="http://192.0.2.1/generate_204", timeout=1.0, weight=1.0),
            EndpointConfig(name="secondary", host="192.0.2.2", port=443, timeout=1.0, weight=0.6),
        ],
        quick_endpoints=[
            EndpointConfig(name="quick", host="192.0.2.3", port=443, timeout=1.0),
            EndpointConfig(name="quick-fallback", host="192.0.2.4", port=443, timeout=1.0),
        ],
    )


@pytest.fixture
def fake_prober():
    return FakeProber()


@pytest.fixture
def dns_strategy():
    return SwitchableDnsStrategy()


@pytest.fixture
def fake_resolver(dns_strategy):
    return DnsResolverMultiplexer([dns_strategy], timeout=1.0)


@pytest.fixture
def interface_provider():
    return FakeInterfaceProvider()
