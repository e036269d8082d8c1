"""Endpoint prober - single TCP/HTTP reachability checks."""

import errno
import socket
import time
from concurrent.futures import Executor, Future, TimeoutError as FutureTimeoutError
from typing import List, Optional, Sequence, Tuple

import requests
from loguru import logger

from netpulse.core.config import EndpointConfig
from netpulse.core.constants import PROBE_GRACE
from netpulse.core.exceptions import (
    ProbeAmbiguous,
    ProbeDnsFailure,
    ProbeError,
    ProbeRefused,
    ProbeTimeout,
    ProbeUnreachable,
)
from netpulse.core.types import EndpointProbeResult, ProbeErrorCode

# Windows reports these instead of the POSIX errno values
WSAEADDRNOTAVAIL = 10049
WSAECONNREFUSED = 10061
WSAETIMEDOUT = 10060

ADDRESS_NOT_AVAILABLE_ERRNOS = {getattr(errno, "EADDRNOTAVAIL", 99), WSAEADDRNOTAVAIL}
REFUSED_ERRNOS = {errno.ECONNREFUSED, WSAECONNREFUSED}
TIMEOUT_ERRNOS = {errno.ETIMEDOUT, WSAETIMEDOUT}


def classify_os_error(exc: BaseException, endpoint_id: Optional[str] = None) -> ProbeError:
    """Map a socket level error onto the probe error taxonomy."""
    if isinstance(exc, ProbeError):
        return exc
    if isinstance(exc, socket.gaierror):
        return ProbeDnsFailure(str(exc), endpoint_id)
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return ProbeTimeout(str(exc) or "Timeout", endpoint_id)
    if isinstance(exc, ConnectionRefusedError):
        return ProbeRefused(str(exc), endpoint_id)

    code = getattr(exc, "errno", None)
    if code in ADDRESS_NOT_AVAILABLE_ERRNOS:
        return ProbeAmbiguous(str(exc), endpoint_id)
    if code in REFUSED_ERRNOS:
        return ProbeRefused(str(exc), endpoint_id)
    if code in TIMEOUT_ERRNOS:
        return ProbeTimeout(str(exc), endpoint_id)
    return ProbeUnreachable(str(exc), endpoint_id)


def _root_os_error(exc: BaseException) -> Optional[OSError]:
    """Walk the cause/context chain of a requests error to the socket error."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, OSError) and not isinstance(current, requests.RequestException):
            return current
        for arg in getattr(current, "args", ()):
            if isinstance(arg, BaseException):
                nested = _root_os_error(arg)
                if nested is not None:
                    return nested
        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException) and id(reason) not in seen:
            current = reason
            continue
        current = current.__cause__ or current.__context__
    return None


class EndpointProber:
    """
    Performs reachability probes against single endpoints.

    ``probe`` never raises: every failure is folded into an
    EndpointProbeResult with an error code.
    """

    def __init__(self, grace: float = PROBE_GRACE, session: Optional[requests.Session] = None):
        self._grace = grace
        self._session = session or requests.Session()

    def probe(self, endpoint: EndpointConfig) -> EndpointProbeResult:
        """
        Probe one endpoint.

        Args:
            endpoint: Target with either ``url`` (HTTP HEAD) or ``host``/``port`` (TCP)

        Returns:
            EndpointProbeResult with latency on success or an error code on failure
        """
        start = time.monotonic()
        try:
            if endpoint.url:
                self._probe_http(endpoint)
            else:
                self._probe_tcp(endpoint)
        except ProbeError as e:
            if isinstance(e, ProbeAmbiguous):
                logger.info(f"[EndpointProber] {endpoint.name} blocked by VPN/firewall: {e}")
            else:
                logger.debug(f"[EndpointProber] {endpoint.name} failed ({e.error_code.value}): {e}")
            return EndpointProbeResult(
                endpoint_id=endpoint.endpoint_id,
                success=False,
                error_code=e.error_code,
                error=str(e),
            )
        except Exception as e:
            logger.debug(f"[EndpointProber] Unexpected error probing {endpoint.name}: {e}")
            return EndpointProbeResult(
                endpoint_id=endpoint.endpoint_id,
                success=False,
                error_code=ProbeErrorCode.UNKNOWN,
                error=str(e),
            )

        latency_ms = (time.monotonic() - start) * 1000
        logger.debug(f"[EndpointProber] {endpoint.name} reachable in {latency_ms:.0f}ms")
        return EndpointProbeResult(endpoint_id=endpoint.endpoint_id, success=True, latency_ms=latency_ms)

    def _probe_tcp(self, endpoint: EndpointConfig) -> None:
        try:
            sock = socket.create_connection((endpoint.host, endpoint.port), timeout=endpoint.timeout)
        except OSError as e:
            raise classify_os_error(e, endpoint.endpoint_id) from e
        sock.close()

    def _probe_http(self, endpoint: EndpointConfig) -> None:
        try:
            # Any HTTP response proves reachability, status code is irrelevant
            response = self._session.head(endpoint.url, timeout=endpoint.timeout, allow_redirects=False)
            response.close()
        except requests.Timeout as e:
            raise ProbeTimeout(str(e), endpoint.endpoint_id) from e
        except requests.ConnectionError as e:
            root = _root_os_error(e)
            if root is not None:
                raise classify_os_error(root, endpoint.endpoint_id) from e
            raise ProbeUnreachable(str(e), endpoint.endpoint_id) from e
        except requests.RequestException as e:
            error = ProbeUnreachable(str(e), endpoint.endpoint_id)
            error.error_code = ProbeErrorCode.HTTP_ERROR
            raise error from e

    def probe_with_fallback(
        self, primary: EndpointConfig, fallbacks: Sequence[EndpointConfig] = ()
    ) -> EndpointProbeResult:
        """
        Probe ``primary`` and, if the failure is ambiguous, try the fallbacks.

        Address-not-available failures usually mean VPN routing rules rather
        than a dead link, so a second endpoint decides before concluding offline.
        """
        result = self.probe(primary)
        if result.success or not result.is_ambiguous:
            return result

        for fallback in fallbacks:
            logger.warning(
                f"[EndpointProber] {primary.name} ambiguous ({result.error_code.value}), "
                f"trying fallback {fallback.name}"
            )
            fallback_result = self.probe(fallback)
            logger.info(f"[EndpointProber] Fallback {fallback.name} success={fallback_result.success}")
            if fallback_result.success:
                return fallback_result
        return result

    def probe_all(self, endpoints: Sequence[EndpointConfig], executor: Executor) -> List[EndpointProbeResult]:
        """
        Probe endpoints concurrently.

        Each probe gets its own deadline (timeout + grace); a probe that misses
        it resolves to a timeout result instead of blocking the join.
        """
        return self.collect(self.submit_all(endpoints, executor))

    def submit_all(self, endpoints: Sequence[EndpointConfig], executor: Executor) -> List[Tuple[EndpointConfig, Future]]:
        """Start probes without waiting, so other work can run alongside."""
        return [(endpoint, executor.submit(self.probe, endpoint)) for endpoint in endpoints]

    def collect(self, futures: Sequence[Tuple[EndpointConfig, Future]]) -> List[EndpointProbeResult]:
        """Join submitted probes, turning missed deadlines into timeout results."""
        started = time.monotonic()
        results = []
        for endpoint, future in futures:
            remaining = endpoint.timeout + self._grace - (time.monotonic() - started)
            try:
                results.append(future.result(timeout=max(remaining, 0)))
            except FutureTimeoutError:
                future.cancel()
                logger.debug(f"[EndpointProber] {endpoint.name} missed its deadline")
                results.append(
                    EndpointProbeResult(
                        endpoint_id=endpoint.endpoint_id,
                        success=False,
                        error_code=ProbeErrorCode.TIMEOUT,
                        error="timeout",
                    )
                )
            except Exception as e:
                results.append(
                    EndpointProbeResult(
                        endpoint_id=endpoint.endpoint_id,
                        success=False,
                        error_code=ProbeErrorCode.UNKNOWN,
                        error=str(e),
                    )
                )
        return results
