"""
DNS resolver multiplexer.

Resolves test hostnames through an ordered chain of platform strategies.
OS lookup commands come first where the native resolver is known to be
flaky under corporate DNS or VPN redirection; the native resolver is the
baseline at the end of every chain.
"""

import ipaddress
import re
import socket
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from netpulse.core.constants import DNS_TIMEOUT, NSLOOKUP_SERVER, SUBPROCESS_TIMEOUT
from netpulse.core.exceptions import DnsStrategyExhausted, NetPulseError, SubprocessFailure
from netpulse.core.types import DnsProbeResult
from netpulse.utils.platform_utils import Platform, PlatformUtils
from netpulse.utils.process_utils import ProcessUtils

CommandRunner = Callable[[List[str], float], str]

ANSWER_MARKER = "answer"
DSCACHEUTIL_IP_PATTERN = re.compile(r"ip_address:\s*([\d.]+)")


def is_valid_ipv4(value: str) -> bool:
    """Check if string is a dotted-quad IPv4 address."""
    if not value or value.count(".") != 3:
        return False
    try:
        ipaddress.IPv4Address(value)
        return True
    except ValueError:
        return False


def _unique(addresses: List[str]) -> List[str]:
    seen = set()
    ordered = []
    for address in addresses:
        if address not in seen:
            seen.add(address)
            ordered.append(address)
    return ordered


def parse_nslookup_output(stdout: str) -> List[str]:
    """
    Extract answer IPv4 addresses from nslookup output.

    Handles both Windows and Unix formats: lines before the answer section
    describe the resolver and are ignored, ``Address:`` and ``Addresses:``
    lines and bare indented continuation lines inside the answer section are
    collected, and values carrying a ``#port`` marker are resolver lines.
    """
    ips: List[str] = []
    in_answer = False

    for line in stdout.splitlines():
        stripped = line.strip()
        if not stripped:
            continue

        lowered = stripped.lower()
        # "Non-authoritative answer:" or "Authoritative answers can be found from:"
        if ANSWER_MARKER in lowered and lowered.endswith(":"):
            in_answer = True
            continue

        if not in_answer:
            continue

        if lowered.startswith("addresses:") or lowered.startswith("address:"):
            value = stripped.split(":", 1)[1].strip()
        elif lowered.startswith("address "):
            # "Address 1: 93.184.216.34" (busybox)
            value = stripped.split(":", 1)[1].strip() if ":" in stripped else ""
        else:
            value = stripped

        if not value or "#" in value:
            continue

        candidate = value.split()[0]
        if is_valid_ipv4(candidate):
            ips.append(candidate)

    return _unique(ips)


def parse_getent_output(stdout: str) -> List[str]:
    """First column of every ``getent ahostsv4``/``getent hosts`` line."""
    ips = []
    for line in stdout.splitlines():
        parts = line.split()
        if parts and is_valid_ipv4(parts[0]):
            ips.append(parts[0])
    return _unique(ips)


def parse_dscacheutil_output(stdout: str) -> List[str]:
    return _unique([ip for ip in DSCACHEUTIL_IP_PATTERN.findall(stdout) if is_valid_ipv4(ip)])


class DnsStrategy:
    """One way of turning a hostname into IPv4 addresses."""

    name = "base"

    def resolve(self, host: str, timeout: float) -> List[str]:
        """
        Resolve ``host``.

        Raises:
            NetPulseError: when this strategy cannot produce an address
        """
        raise NotImplementedError


class SocketStrategy(DnsStrategy):
    """Native resolver via getaddrinfo (IPv4 only)."""

    name = "socket"

    def __init__(self, executor: Optional[Executor] = None):
        self._executor = executor

    def resolve(self, host: str, timeout: float) -> List[str]:
        # getaddrinfo has no timeout of its own
        executor = self._executor or _shared_lookup_executor()
        future = executor.submit(socket.getaddrinfo, host, None, socket.AF_INET, socket.SOCK_STREAM)
        try:
            infos = future.result(timeout=timeout)
        except FutureTimeoutError as e:
            future.cancel()
            raise NetPulseError(f"getaddrinfo timed out after {timeout}s") from e
        except OSError as e:
            raise NetPulseError(f"getaddrinfo failed: {e}") from e

        ips = _unique([info[4][0] for info in infos if is_valid_ipv4(info[4][0])])
        if not ips:
            raise NetPulseError("getaddrinfo returned no IPv4 addresses")
        return ips


class _CommandStrategy(DnsStrategy):
    """Shared plumbing for strategies backed by an OS lookup command."""

    def __init__(self, runner: Optional[CommandRunner] = None, command_timeout: float = SUBPROCESS_TIMEOUT):
        self._runner = runner or (lambda cmd, timeout: ProcessUtils.run_command(cmd, timeout=timeout))
        self._command_timeout = command_timeout

    def _build_command(self, host: str, timeout: float) -> List[str]:
        raise NotImplementedError

    def _parse(self, stdout: str) -> List[str]:
        raise NotImplementedError

    def resolve(self, host: str, timeout: float) -> List[str]:
        cmd = self._build_command(host, timeout)
        stdout = self._runner(cmd, max(self._command_timeout, timeout))
        ips = self._parse(stdout)
        if not ips:
            raise SubprocessFailure("No IP addresses found", command=" ".join(cmd), output=stdout)
        return ips


class GetentStrategy(_CommandStrategy):
    """Linux NSS lookup, honours /etc/hosts and systemd-resolved."""

    name = "getent"

    def _build_command(self, host: str, timeout: float) -> List[str]:
        return ["getent", "ahostsv4", host]

    def _parse(self, stdout: str) -> List[str]:
        return parse_getent_output(stdout)


class DscacheutilStrategy(_CommandStrategy):
    """macOS directory service cache lookup."""

    name = "dscacheutil"

    def _build_command(self, host: str, timeout: float) -> List[str]:
        return ["dscacheutil", "-q", "host", "-a", "name", host]

    def _parse(self, stdout: str) -> List[str]:
        return parse_dscacheutil_output(stdout)


class NslookupStrategy(_CommandStrategy):
    """nslookup against an explicit public resolver."""

    name = "nslookup"

    def __init__(
        self,
        server: str = NSLOOKUP_SERVER,
        runner: Optional[CommandRunner] = None,
        command_timeout: float = SUBPROCESS_TIMEOUT,
    ):
        super().__init__(runner=runner, command_timeout=command_timeout)
        self._server = server

    def _build_command(self, host: str, timeout: float) -> List[str]:
        cmd = ["nslookup", f"-timeout={max(int(timeout), 1)}", host]
        if self._server:
            cmd.append(self._server)
        return cmd

    def _parse(self, stdout: str) -> List[str]:
        return parse_nslookup_output(stdout)


def default_strategies(
    platform: Optional[Platform] = None,
    nslookup_server: str = NSLOOKUP_SERVER,
    command_timeout: float = SUBPROCESS_TIMEOUT,
) -> List[DnsStrategy]:
    """Pick the strategy chain for a platform (done once, at construction)."""
    platform = platform or PlatformUtils.get_platform()
    nslookup = NslookupStrategy(server=nslookup_server, command_timeout=command_timeout)

    if platform == Platform.LINUX:
        return [GetentStrategy(command_timeout=command_timeout), nslookup, SocketStrategy()]
    elif platform == Platform.MACOS:
        return [DscacheutilStrategy(command_timeout=command_timeout), nslookup, SocketStrategy()]
    elif platform == Platform.WINDOWS:
        # PowerShell Resolve-DnsName is avoided: hung instances pile up
        return [nslookup, SocketStrategy()]
    else:
        return [SocketStrategy()]


_lookup_executor: Optional[ThreadPoolExecutor] = None


def _shared_lookup_executor() -> ThreadPoolExecutor:
    global _lookup_executor
    if _lookup_executor is None:
        _lookup_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="netpulse-getaddrinfo")
    return _lookup_executor


class DnsResolverMultiplexer:
    """Resolves hostnames through a fallback chain of DnsStrategy objects."""

    def __init__(self, strategies: Optional[Sequence[DnsStrategy]] = None, timeout: float = DNS_TIMEOUT):
        """
        Initialize the multiplexer.

        Args:
            strategies: Ordered chain; defaults to the current platform's chain
            timeout: Per-strategy lookup timeout in seconds
        """
        self._strategies = list(strategies) if strategies is not None else default_strategies()
        self._timeout = timeout
        logger.debug(f"[DnsResolver] Strategy chain: {[s.name for s in self._strategies]}")

    @property
    def default_deadline(self) -> float:
        """Worst case for one host walking the whole chain."""
        return self._timeout * max(len(self._strategies), 1) + 1.0

    @property
    def strategy_names(self) -> List[str]:
        return [s.name for s in self._strategies]

    def resolve(self, host: str) -> DnsProbeResult:
        """
        Resolve one host. Never raises.

        Returns:
            DnsProbeResult; the first strategy yielding an IPv4 address wins
        """
        start = time.monotonic()
        try:
            ips, strategy_name = self._resolve_chain(host)
        except DnsStrategyExhausted as e:
            logger.info(f"[DnsResolver] DNS check FAILED for {host}: {e}")
            return DnsProbeResult(host=host, success=False, error=str(e))

        latency_ms = (time.monotonic() - start) * 1000
        logger.debug(f"[DnsResolver] {host} -> {', '.join(ips)} via {strategy_name} in {latency_ms:.0f}ms")
        return DnsProbeResult(
            host=host,
            success=True,
            latency_ms=latency_ms,
            resolved_addresses=ips,
            strategy=strategy_name,
        )

    def _resolve_chain(self, host: str) -> Tuple[List[str], str]:
        attempts: Dict[str, str] = {}
        for strategy in self._strategies:
            try:
                ips = strategy.resolve(host, self._timeout)
            except NetPulseError as e:
                attempts[strategy.name] = str(e)
                logger.debug(f"[DnsResolver] {strategy.name} failed for {host}: {e}")
                continue
            except Exception as e:
                attempts[strategy.name] = f"unexpected: {e}"
                logger.debug(f"[DnsResolver] {strategy.name} crashed for {host}: {e}")
                continue

            valid = [ip for ip in ips if is_valid_ipv4(ip)]
            if valid:
                return valid, strategy.name
            attempts[strategy.name] = "no valid IPv4 address"

        raise DnsStrategyExhausted(host, attempts)

    def resolve_all(self, hosts: Sequence[str], executor: Executor, deadline: Optional[float] = None) -> List[DnsProbeResult]:
        """
        Resolve hosts concurrently with a hard deadline per host.

        Args:
            hosts: Hostnames to resolve
            executor: Pool to run lookups on
            deadline: Seconds allowed per host; defaults to the whole chain's worst case
        """
        return self.collect(self.submit_all(hosts, executor), deadline)

    def submit_all(self, hosts: Sequence[str], executor: Executor) -> List[Tuple[str, Future]]:
        return [(host, executor.submit(self.resolve, host)) for host in hosts]

    def collect(self, futures: Sequence[Tuple[str, Future]], deadline: Optional[float] = None) -> List[DnsProbeResult]:
        """Join submitted lookups; a lookup past the deadline becomes a failure."""
        if deadline is None:
            deadline = self.default_deadline

        started = time.monotonic()
        results = []
        for host, future in futures:
            remaining = deadline - (time.monotonic() - started)
            try:
                results.append(future.result(timeout=max(remaining, 0)))
            except FutureTimeoutError:
                future.cancel()
                results.append(DnsProbeResult(host=host, success=False, error="timeout"))
            except Exception as e:
                results.append(DnsProbeResult(host=host, success=False, error=str(e)))
        return results
