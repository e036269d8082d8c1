"""Tests for the adaptive check scheduler."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest

from netpulse.core.types import (
    AddressInfo,
    ConnectionType,
    EndpointProbeResult,
    NetworkQuality,
    NetworkState,
    ProbeErrorCode,
)
from netpulse.services.interface_monitor import InterfaceMonitor
from netpulse.services.network_scheduler import NetworkScheduler
from netpulse.services.quality_classifier import QualityClassifier
from netpulse.services.state_reconciler import ProposalOutcome, StateReconciler
from netpulse.services.vpn_detector import VpnDetector

WG0 = [AddressInfo("10.8.0.2", "IPv4", "255.255.255.0")]


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def reconciler(broadcaster, engine_config, clock):
    reconciler = StateReconciler(broadcaster, config=engine_config, clock=clock)
    yield reconciler
    reconciler.destroy()


@pytest.fixture
def build_scheduler(engine_config, broadcaster, fake_prober, fake_resolver, interface_provider, clock, executor):
    created = []

    def _build(reconciler, vpn_grace=0):
        scheduler = NetworkScheduler(
            config=engine_config,
            reconciler=reconciler,
            broadcaster=broadcaster,
            prober=fake_prober,
            resolver=fake_resolver,
            interface_monitor=InterfaceMonitor(interface_provider),
            vpn_detector=VpnDetector(startup_grace=vpn_grace, clock=clock),
            classifier=QualityClassifier(),
            executor=executor,
            clock=clock,
        )
        created.append(scheduler)
        return scheduler

    yield _build
    for scheduler in created:
        scheduler.stop()


@pytest.fixture
def scheduler(build_scheduler, reconciler):
    return build_scheduler(reconciler)


def mock_reconciler(state=None):
    reconciler = MagicMock()
    reconciler.is_destroyed = False
    reconciler.last_transition_at = None
    reconciler.get_state.return_value = state or NetworkState()
    return reconciler


class TestComprehensiveCheck:
    def test_online_check_fills_state(self, scheduler, fake_prober):
        state = scheduler.run_comprehensive_check(immediate=True)

        assert sorted(fake_prober.probed) == ["primary", "secondary"]
        assert state.is_online is True
        assert state.quality == NetworkQuality.EXCELLENT
        assert state.primary_interface == "eth0"
        assert state.connection_type == ConnectionType.ETHERNET
        assert [i.name for i in state.interfaces] == ["eth0"]
        assert state.diagnostics.dns_resolvable is True
        assert state.diagnostics.latency_ms == pytest.approx(20.0)
        assert state.vpn_active is False
        assert state.version == 1

    def test_offline_suppressed_during_grace_then_applied(
        self, scheduler, reconciler, fake_prober, dns_strategy, clock, collector
    ):
        fake_prober.online = False
        dns_strategy.addresses = []

        state = scheduler.run_comprehensive_check(immediate=True)
        assert state.is_online is True

        clock.advance(11)
        state = scheduler.run_comprehensive_check(immediate=True)

        assert state.is_online is False
        assert state.quality == NetworkQuality.OFFLINE
        assert state.diagnostics.internet_reachable is False
        assert collector.events[-1].connectivity_changed is True
        assert reconciler.last_transition_at == clock()

    def test_vpn_flag_rederived_on_every_check(self, scheduler, interface_provider):
        interface_provider.current["wg0"] = WG0

        assert scheduler.run_comprehensive_check(immediate=True).vpn_active is True

        del interface_provider.current["wg0"]
        state = scheduler.run_comprehensive_check(immediate=True)

        assert state.vpn_active is False
        assert [i.name for i in state.interfaces] == ["eth0"]

    def test_disconnect_during_vpn_grace_corrected_by_next_check(
        self, build_scheduler, reconciler, broadcaster, interface_provider, clock
    ):
        """A VPN disconnect ignored during the startup grace must not leave the flag stuck."""
        scheduler = build_scheduler(reconciler, vpn_grace=5)
        vpn_events = []
        broadcaster.subscribe_vpn(vpn_events.append)

        interface_provider.current["wg0"] = WG0
        scheduler.poll_interfaces()  # baseline
        assert scheduler.run_comprehensive_check(immediate=True).vpn_active is True

        clock.advance(2)
        del interface_provider.current["wg0"]
        with patch.object(scheduler, "request_comprehensive_check"):
            scheduler.poll_interfaces()

        assert reconciler.get_state().vpn_active is True
        assert vpn_events == []

        clock.advance(60)
        state = scheduler.run_comprehensive_check(immediate=True)

        assert state.vpn_active is False
        assert len(vpn_events) == 1
        assert vpn_events[0].active is False
        assert vpn_events[0].was_active is True
        assert vpn_events[0].state.vpn_active is False

    def test_keeps_consensus_and_marks_initial_check(self, build_scheduler):
        reconciler = mock_reconciler()
        scheduler = build_scheduler(reconciler)

        scheduler.run_comprehensive_check()
        scheduler.run_comprehensive_check()

        reconciler.reset_consensus.assert_not_called()
        reconciler.mark_initial_check_complete.assert_called()

        first, second = reconciler.propose.call_args_list
        assert first[0][0]["vpn_active"] is False
        assert second[0][0]["vpn_active"] is False
        assert first[1] == {"immediate": False}

    def test_quick_and_comprehensive_votes_add_up(
        self, build_scheduler, broadcaster, engine_config, fake_prober, dns_strategy, clock
    ):
        engine_config.required_consecutive_checks = 2
        reconciler = StateReconciler(broadcaster, config=engine_config, clock=clock)
        scheduler = build_scheduler(reconciler)
        try:
            scheduler.run_comprehensive_check(immediate=True)
            clock.advance(11)
            fake_prober.online = False
            dns_strategy.addresses = []

            assert scheduler.run_quick_check() == ProposalOutcome.PENDING_CONSENSUS
            assert reconciler.consensus.offline == 1

            state = scheduler.run_comprehensive_check(immediate=True)

            assert state.is_online is False
            assert state.quality == NetworkQuality.OFFLINE
        finally:
            reconciler.destroy()

    def test_stopped_scheduler_discards(self, scheduler, fake_prober):
        scheduler.stop()

        state = scheduler.run_comprehensive_check(immediate=True)

        assert state.version == 0
        assert fake_prober.probed == []
        assert scheduler.run_quick_check() is None


class TestQuickCheck:
    def test_skipped_right_after_comprehensive(self, scheduler, fake_prober, clock):
        scheduler.run_comprehensive_check(immediate=True)
        fake_prober.probed.clear()

        assert scheduler.run_quick_check() is None
        assert fake_prober.probed == []

        clock.advance(3)
        assert scheduler.run_quick_check() == ProposalOutcome.STABLE
        assert fake_prober.probed == ["quick"]

    def test_offline_applied_immediately(self, scheduler, reconciler, fake_prober, clock):
        scheduler.run_comprehensive_check(immediate=True)
        clock.advance(11)
        fake_prober.online = False

        assert scheduler.run_quick_check() == ProposalOutcome.APPLIED
        assert reconciler.get_state().is_online is False

    def test_superseded_by_comprehensive_check(self, scheduler, reconciler, fake_prober):
        def probe_while_comprehensive_starts(primary, fallbacks):
            scheduler.run_comprehensive_check(immediate=True)
            return EndpointProbeResult(primary.endpoint_id, False, error_code=ProbeErrorCode.TIMEOUT)

        with patch.object(fake_prober, "probe_with_fallback", side_effect=probe_while_comprehensive_starts):
            assert scheduler.run_quick_check() is None

        assert reconciler.get_state().is_online is True

    def test_fallbacks_passed_through(self, build_scheduler, fake_prober, engine_config):
        reconciler = mock_reconciler()
        scheduler = build_scheduler(reconciler)

        with patch.object(fake_prober, "probe_with_fallback", wraps=fake_prober.probe_with_fallback) as probe:
            scheduler.run_quick_check()

        primary, fallbacks = probe.call_args[0]
        assert primary.name == "quick"
        assert [f.name for f in fallbacks] == ["quick-fallback"]
        reconciler.propose.assert_called_once_with({"is_online": True}, immediate=True)


class TestInterfacePolling:
    def test_vpn_interface_added(self, scheduler, reconciler, broadcaster, interface_provider):
        vpn_events = []
        broadcaster.subscribe_vpn(vpn_events.append)
        scheduler.poll_interfaces()  # baseline

        interface_provider.current["wg0"] = WG0
        with patch.object(scheduler, "request_comprehensive_check") as request:
            scheduler.poll_interfaces()

        request.assert_called_once()
        state = reconciler.get_state()
        assert state.vpn_active is True
        assert [i.name for i in state.interfaces] == ["eth0", "wg0"]
        assert len(vpn_events) == 1
        assert vpn_events[0].active is True
        assert vpn_events[0].interface == "wg0"
        assert vpn_events[0].state.vpn_active is True

    def test_insignificant_change_is_ignored(self, scheduler, reconciler, interface_provider):
        scheduler.poll_interfaces()

        interface_provider.current["eth0"] = interface_provider.current["eth0"] + [AddressInfo("fe80::1", "IPv6")]
        with patch.object(scheduler, "request_comprehensive_check") as request:
            scheduler.poll_interfaces()

        request.assert_not_called()
        assert reconciler.version == 0

    def test_change_requests_are_coalesced(self, scheduler, reconciler, fake_prober, engine_config):
        engine_config.network_change_debounce = 0.05

        scheduler.request_comprehensive_check()
        scheduler.request_comprehensive_check()

        deadline = time.monotonic() + 3
        while reconciler.version == 0 and time.monotonic() < deadline:
            time.sleep(0.02)
        time.sleep(0.1)

        assert reconciler.version == 1
        assert sorted(fake_prober.probed) == ["primary", "secondary"]


class TestStableMode:
    def test_stable_after_threshold(self, scheduler, clock):
        assert scheduler.is_stable_mode() is False
        assert scheduler._interval(15) == 15

        clock.advance(301)

        assert scheduler.is_stable_mode() is True
        assert scheduler._interval(15) == 30

    def test_offline_is_never_stable(self, build_scheduler, clock):
        scheduler = build_scheduler(mock_reconciler(NetworkState(is_online=False)))
        clock.advance(1000)
        assert scheduler.is_stable_mode() is False

    def test_measured_from_last_transition(self, build_scheduler, clock):
        reconciler = mock_reconciler()
        reconciler.last_transition_at = clock() + 200
        scheduler = build_scheduler(reconciler)

        clock.advance(301)
        assert scheduler.is_stable_mode() is False

        clock.advance(200)
        assert scheduler.is_stable_mode() is True

    def test_mode_switch_logged_once_across_loops(self, scheduler, clock):
        clock.advance(301)

        with patch("netpulse.services.network_scheduler.logger") as mock_logger:
            threads = [threading.Thread(target=scheduler._interval, args=(15,)) for _ in range(8)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        stable_logs = [c for c in mock_logger.info.call_args_list if "Network stable" in c[0][0]]
        assert len(stable_logs) == 1
