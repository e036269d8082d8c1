"""Tests for endpoint probing and error classification."""

import errno
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest
import requests

from netpulse.core.config import EndpointConfig
from netpulse.core.exceptions import ProbeAmbiguous, ProbeDnsFailure, ProbeRefused, ProbeTimeout, ProbeUnreachable
from netpulse.core.types import EndpointProbeResult, ProbeErrorCode
from netpulse.services.endpoint_prober import EndpointProber, classify_os_error

TCP_ENDPOINT = EndpointConfig(name="dns-google", host="8.8.8.8", port=53, timeout=1.0)
HTTP_ENDPOINT = EndpointConfig(name="google-204", url="http://www.google.com/generate_204", timeout=1.0)
FALLBACK_ENDPOINT = EndpointConfig(name="cloudflare", host="1.1.1.1", port=443, timeout=1.0)


class TestClassifyOsError:
    @pytest.mark.parametrize(
        "exc,expected",
        [
            (OSError(errno.EADDRNOTAVAIL, "Cannot assign requested address"), ProbeAmbiguous),
            (OSError(10049, "The requested address is not valid in its context"), ProbeAmbiguous),
            (ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused"), ProbeRefused),
            (OSError(10061, "No connection could be made"), ProbeRefused),
            (socket.timeout("timed out"), ProbeTimeout),
            (OSError(10060, "Connection timed out"), ProbeTimeout),
            (socket.gaierror(-2, "Name or service not known"), ProbeDnsFailure),
            (OSError(errno.ENETUNREACH, "Network is unreachable"), ProbeUnreachable),
        ],
    )
    def test_mapping(self, exc, expected):
        error = classify_os_error(exc, "ep")
        assert isinstance(error, expected)
        assert error.endpoint_id == "ep"

    def test_ambiguous_code(self):
        error = classify_os_error(OSError(errno.EADDRNOTAVAIL, "nope"))
        assert error.error_code == ProbeErrorCode.ADDRESS_NOT_AVAILABLE
        assert error.error_code.is_ambiguous


class TestTcpProbe:
    @patch("netpulse.services.endpoint_prober.socket.create_connection")
    def test_success_reports_latency(self, mock_connect):
        sock = MagicMock()
        mock_connect.return_value = sock

        result = EndpointProber().probe(TCP_ENDPOINT)

        assert result.success is True
        assert result.latency_ms is not None and result.latency_ms >= 0
        mock_connect.assert_called_once_with(("8.8.8.8", 53), timeout=1.0)
        sock.close.assert_called_once()

    @patch("netpulse.services.endpoint_prober.socket.create_connection")
    def test_refused(self, mock_connect):
        mock_connect.side_effect = ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused")

        result = EndpointProber().probe(TCP_ENDPOINT)

        assert result.success is False
        assert result.error_code == ProbeErrorCode.REFUSED
        assert result.latency_ms is None

    @patch("netpulse.services.endpoint_prober.socket.create_connection")
    def test_address_not_available_is_ambiguous(self, mock_connect):
        mock_connect.side_effect = OSError(errno.EADDRNOTAVAIL, "Cannot assign requested address")

        result = EndpointProber().probe(TCP_ENDPOINT)

        assert result.is_ambiguous is True

    @patch("netpulse.services.endpoint_prober.socket.create_connection")
    def test_unexpected_error_never_raises(self, mock_connect):
        mock_connect.side_effect = ValueError("bad port")

        result = EndpointProber().probe(TCP_ENDPOINT)

        assert result.success is False
        assert result.error_code == ProbeErrorCode.UNKNOWN


class TestHttpProbe:
    def test_any_response_is_success(self):
        session = MagicMock()
        session.head.return_value = MagicMock(status_code=503)

        result = EndpointProber(session=session).probe(HTTP_ENDPOINT)

        assert result.success is True
        session.head.assert_called_once_with(HTTP_ENDPOINT.url, timeout=1.0, allow_redirects=False)

    def test_timeout(self):
        session = MagicMock()
        session.head.side_effect = requests.Timeout("read timed out")

        result = EndpointProber(session=session).probe(HTTP_ENDPOINT)

        assert result.error_code == ProbeErrorCode.TIMEOUT

    def test_nested_socket_error_is_classified(self):
        session = MagicMock()
        session.head.side_effect = requests.ConnectionError(
            OSError(errno.EADDRNOTAVAIL, "Cannot assign requested address")
        )

        result = EndpointProber(session=session).probe(HTTP_ENDPOINT)

        assert result.error_code == ProbeErrorCode.ADDRESS_NOT_AVAILABLE

    def test_connection_error_without_cause(self):
        session = MagicMock()
        session.head.side_effect = requests.ConnectionError("connection aborted")

        result = EndpointProber(session=session).probe(HTTP_ENDPOINT)

        assert result.error_code == ProbeErrorCode.UNREACHABLE

    def test_other_request_error(self):
        session = MagicMock()
        session.head.side_effect = requests.TooManyRedirects("loop")

        result = EndpointProber(session=session).probe(HTTP_ENDPOINT)

        assert result.error_code == ProbeErrorCode.HTTP_ERROR


class TestProbeWithFallback:
    def _prober(self, outcomes):
        prober = EndpointProber()
        prober.probe = MagicMock(side_effect=outcomes)
        return prober

    def test_ambiguous_primary_uses_fallback(self):
        prober = self._prober(
            [
                EndpointProbeResult("dns-google", False, error_code=ProbeErrorCode.ADDRESS_NOT_AVAILABLE),
                EndpointProbeResult("cloudflare", True, latency_ms=20.0),
            ]
        )

        result = prober.probe_with_fallback(TCP_ENDPOINT, [FALLBACK_ENDPOINT])

        assert result.success is True
        assert result.endpoint_id == "cloudflare"

    def test_plain_failure_skips_fallback(self):
        prober = self._prober([EndpointProbeResult("dns-google", False, error_code=ProbeErrorCode.REFUSED)])

        result = prober.probe_with_fallback(TCP_ENDPOINT, [FALLBACK_ENDPOINT])

        assert result.success is False
        assert prober.probe.call_count == 1

    def test_failed_fallback_returns_primary_result(self):
        primary = EndpointProbeResult("dns-google", False, error_code=ProbeErrorCode.ADDRESS_NOT_AVAILABLE)
        prober = self._prober([primary, EndpointProbeResult("cloudflare", False, error_code=ProbeErrorCode.TIMEOUT)])

        assert prober.probe_with_fallback(TCP_ENDPOINT, [FALLBACK_ENDPOINT]) is primary


class SlowProber(EndpointProber):
    def probe(self, endpoint):
        time.sleep(0.5)
        return super().probe(endpoint)


class TestProbeAll:
    @patch("netpulse.services.endpoint_prober.socket.create_connection")
    def test_results_follow_endpoint_order(self, mock_connect):
        endpoints = [TCP_ENDPOINT, FALLBACK_ENDPOINT]

        with ThreadPoolExecutor(max_workers=2) as executor:
            results = EndpointProber().probe_all(endpoints, executor)

        assert [r.endpoint_id for r in results] == ["dns-google", "cloudflare"]
        assert all(r.success for r in results)

    def test_missed_deadline_becomes_timeout(self):
        slow = EndpointConfig(name="slow", host="10.255.255.1", port=80, timeout=0.05)

        with patch("netpulse.services.endpoint_prober.socket.create_connection"):
            with ThreadPoolExecutor(max_workers=1) as executor:
                results = SlowProber(grace=0.0).probe_all([slow], executor)

        assert results[0].success is False
        assert results[0].error_code == ProbeErrorCode.TIMEOUT
