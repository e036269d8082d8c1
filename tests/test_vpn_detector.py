"""Tests for VPN heuristics."""

import pytest

from netpulse.core.types import AddressInfo, ChangeType, InterfaceChange, InterfaceInfo
from netpulse.services.vpn_detector import VpnChangeSignal, VpnDetector, is_vpn_interface

WG_V4 = [AddressInfo("10.8.0.2", "IPv4")]


def added(name, has_ipv4=True):
    return InterfaceChange(type=ChangeType.ADDED, interface_name=name, has_ipv4=has_ipv4, addresses=WG_V4)


def removed(name, addresses=WG_V4):
    return InterfaceChange(type=ChangeType.REMOVED, interface_name=name, previous_addresses=addresses)


@pytest.mark.parametrize(
    "name,expected",
    [
        ("utun3", True),
        ("tun0", True),
        ("tap0", True),
        ("ppp0", True),
        ("wg0", True),
        ("NordVPN", True),
        ("ipsec0", True),
        ("eth0", False),
        ("wlan0", False),
        ("", False),
    ],
)
def test_is_vpn_interface(name, expected):
    assert is_vpn_interface(name) is expected


class TestVpnDetector:
    def test_detect_active_returns_first_match(self):
        interfaces = [InterfaceInfo("eth0"), InterfaceInfo("wg0"), InterfaceInfo("tun0")]
        assert VpnDetector().detect_active(interfaces) == "wg0"
        assert VpnDetector().detect_active([InterfaceInfo("eth0")]) is None

    def test_connect_signal(self):
        detector = VpnDetector(startup_grace=0)

        signals = detector.evaluate_changes([added("wg0")])

        assert signals == [VpnChangeSignal(active=True, interface="wg0")]
        assert detector.active is True

    def test_added_without_ipv4_is_ignored(self):
        detector = VpnDetector(startup_grace=0)
        assert detector.evaluate_changes([added("utun4", has_ipv4=False)]) == []

    def test_non_vpn_changes_are_ignored(self):
        detector = VpnDetector(startup_grace=0)
        assert detector.evaluate_changes([added("eth1"), removed("eth0")]) == []

    def test_disconnect_suppressed_during_startup_grace(self, clock):
        detector = VpnDetector(startup_grace=10, clock=clock)
        detector.seed(True)

        assert detector.evaluate_changes([removed("wg0")]) == []
        assert detector.active is True

        clock.advance(11)
        assert detector.evaluate_changes([removed("wg0")]) == [VpnChangeSignal(active=False, interface="wg0")]
        assert detector.active is False

    def test_connect_allowed_during_startup_grace(self, clock):
        detector = VpnDetector(startup_grace=10, clock=clock)
        assert len(detector.evaluate_changes([added("tun0")])) == 1

    def test_duplicate_state_is_not_signalled(self):
        detector = VpnDetector(startup_grace=0)
        detector.seed(True)
        assert detector.evaluate_changes([added("wg1")]) == []

    def test_removed_without_previous_ipv4(self):
        detector = VpnDetector(startup_grace=0)
        detector.seed(True)
        assert detector.evaluate_changes([removed("wg0", addresses=[AddressInfo("fe80::1", "IPv6")])]) == []
